"""
RecoveryManager - ordered recovery strategies with consent gating.

This module provides:
- RecoveryStrategy: catalogue entry describing one escalation step
- RECOVERY_STRATEGIES: the S1-S4 ladder, lightest first
- RecoveryManager: strategy selection, rate limiting, consent prompts
  and execution

Every strategy reaches the agent-session subsystem only through the
injected session-cleanup hook; nothing here imports that subsystem.
Execution never raises past this module: failures come back as a
RecoveryResult with success=False.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Union

from halo_health.config import HealthSettings, get_settings
from halo_health.core.exceptions import ProcessKillError, RecoveryError
from halo_health.core.types import RecoveryResult, RecoveryStrategyId
from halo_health.health_checker.runtime_checker import run_ppid_scan_and_cleanup
from halo_health.process_guardian import (
    cleanup_orphans,
    force_kill_process,
    get_platform_ops,
    get_process_registry,
    get_running_managed_processes,
    mark_clean_exit,
)
from halo_health.process_guardian.platform import SIGTERM

logger = logging.getLogger(__name__)

SessionCleanupFn = Callable[[], Union[None, Awaitable[None]]]
RestartHandler = Callable[[], Union[None, Awaitable[None]]]
ConsentPrompt = Callable[["RecoveryStrategy", str], Awaitable[bool]]

CONSENT_REQUIRED_MESSAGE = "consent required"
_HISTORY_LIMIT = 20


@dataclass(frozen=True)
class RecoveryStrategy:
    """One step of the escalation ladder."""
    id: RecoveryStrategyId
    name: str
    description: str
    requires_consent: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id.value,
            "name": self.name,
            "description": self.description,
            "requiresConsent": self.requires_consent,
        }


RECOVERY_STRATEGIES: Dict[RecoveryStrategyId, RecoveryStrategy] = {
    RecoveryStrategyId.S1: RecoveryStrategy(
        RecoveryStrategyId.S1, "Reconcile processes",
        "Rescan child processes and drop dead registry entries", False),
    RecoveryStrategyId.S2: RecoveryStrategy(
        RecoveryStrategyId.S2, "Reset sessions",
        "Close all agent sessions and clean up orphan processes", False),
    RecoveryStrategyId.S3: RecoveryStrategy(
        RecoveryStrategyId.S3, "Terminate processes",
        "Terminate every managed process and clear the registry", True),
    RecoveryStrategyId.S4: RecoveryStrategy(
        RecoveryStrategyId.S4, "Restart application",
        "Terminate every managed process and restart the application", True),
}


async def _maybe_await(value: Any) -> None:
    if inspect.isawaitable(value):
        await value


class RecoveryManager:
    """
    Executes recovery strategies under rate limiting and consent rules.

    Rules:
    - S3/S4 never run without explicit consent.
    - ``can_recover`` enforces a cool-down between attempts.
    - A declined consent prompt suppresses that strategy's prompt for the
      suppression window; a successful recovery lifts all suppression.
    """

    def __init__(self, settings: Optional[HealthSettings] = None):
        self._settings = settings
        self._session_cleanup: Optional[SessionCleanupFn] = None
        self._consent_prompt: Optional[ConsentPrompt] = None
        self._restart_handler: Optional[RestartHandler] = None

        self._last_recovery_at: Optional[float] = None
        self._error_count = 0
        self._suppressed_until: Dict[RecoveryStrategyId, float] = {}
        self._history: Deque[RecoveryResult] = deque(maxlen=_HISTORY_LIMIT)
        self._total_attempts = 0
        self._successful_attempts = 0

    @property
    def settings(self) -> HealthSettings:
        return self._settings or get_settings()

    # -------------------------------------------------------------------------
    # Injection
    # -------------------------------------------------------------------------

    def inject_session_cleanup(self, fn: Optional[SessionCleanupFn]) -> None:
        self._session_cleanup = fn

    def set_consent_prompt(self, fn: Optional[ConsentPrompt]) -> None:
        self._consent_prompt = fn

    def set_restart_handler(self, fn: Optional[RestartHandler]) -> None:
        self._restart_handler = fn

    # -------------------------------------------------------------------------
    # Selection / rate limiting
    # -------------------------------------------------------------------------

    def select_recovery_strategy(self, consecutive_failures: int, source: str) -> Optional[RecoveryStrategyId]:
        """
        Map an escalation level to a strategy.

        Args:
            consecutive_failures: Critical events since the last reset
            source: Event source; config failures need a user fix, not a restart

        Returns:
            Strategy id, or None when no automatic recovery applies
        """
        if source == "config" or consecutive_failures <= 0:
            return None
        if consecutive_failures == 1:
            return RecoveryStrategyId.S1
        if consecutive_failures == 2:
            return RecoveryStrategyId.S2
        if consecutive_failures == 3:
            return RecoveryStrategyId.S3
        return RecoveryStrategyId.S4

    def can_recover(self) -> bool:
        if self._last_recovery_at is None:
            return True
        return time.monotonic() - self._last_recovery_at >= self.settings.recovery_cooldown

    def update_error_count(self, count: int) -> None:
        self._error_count = max(0, int(count))

    def reset_dialog_suppression(self, strategy_id: Optional[RecoveryStrategyId] = None) -> None:
        if strategy_id is None:
            self._suppressed_until.clear()
        else:
            self._suppressed_until.pop(RecoveryStrategyId(strategy_id), None)

    def is_dialog_suppressed(self, strategy_id: RecoveryStrategyId) -> bool:
        until = self._suppressed_until.get(RecoveryStrategyId(strategy_id))
        return until is not None and time.monotonic() < until

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_recovery(
        self,
        strategy_id: Union[RecoveryStrategyId, str],
        user_consented: bool = False,
    ) -> RecoveryResult:
        strategy = RECOVERY_STRATEGIES[RecoveryStrategyId(strategy_id)]

        if strategy.requires_consent and not user_consented:
            logger.info(f"[Health][Recovery] {strategy.id.value} refused: {CONSENT_REQUIRED_MESSAGE}")
            return RecoveryResult(strategy_id=strategy.id, success=False, message=CONSENT_REQUIRED_MESSAGE)

        self._last_recovery_at = time.monotonic()
        self._total_attempts += 1
        logger.info(f"[Health][Recovery] Executing {strategy.id.value} ({strategy.name})")

        try:
            message = await self._run(strategy.id)
            result = RecoveryResult(strategy_id=strategy.id, success=True, message=message)
        except RecoveryError as e:
            result = RecoveryResult(strategy_id=strategy.id, success=False, message=str(e))
        except Exception as e:
            logger.exception(f"[Health][Recovery] {strategy.id.value} crashed")
            result = RecoveryResult(strategy_id=strategy.id, success=False, message=f"Unexpected error: {e}")

        if result.success:
            self._successful_attempts += 1
            self.reset_dialog_suppression()
            logger.info(f"[Health][Recovery] {strategy.id.value} succeeded: {result.message}")
        else:
            logger.warning(f"[Health][Recovery] {strategy.id.value} failed: {result.message}")
        self._history.appendleft(result)
        return result

    async def execute_recovery_with_prompt(
        self,
        strategy_id: Union[RecoveryStrategyId, str],
        message: Optional[str] = None,
    ) -> RecoveryResult:
        """Ask the user (via the injected blocking prompt) before a disruptive strategy."""
        strategy = RECOVERY_STRATEGIES[RecoveryStrategyId(strategy_id)]
        if not strategy.requires_consent:
            return await self.execute_recovery(strategy.id, False)

        if self.is_dialog_suppressed(strategy.id):
            logger.info(f"[Health][Recovery] Prompt for {strategy.id.value} suppressed")
            return RecoveryResult(strategy_id=strategy.id, success=False, message="Recovery prompt suppressed")

        if self._consent_prompt is None:
            logger.warning(f"[Health][Recovery] No consent prompt registered for {strategy.id.value}")
            return RecoveryResult(strategy_id=strategy.id, success=False, message=CONSENT_REQUIRED_MESSAGE)

        prompt_text = message or strategy.description
        try:
            consented = bool(await self._consent_prompt(strategy, prompt_text))
        except Exception as e:
            logger.error(f"[Health][Recovery] Consent prompt failed: {e}")
            consented = False

        if not consented:
            self._suppressed_until[strategy.id] = time.monotonic() + self.settings.dialog_suppression
            logger.info(f"[Health][Recovery] User declined {strategy.id.value}")
            return RecoveryResult(strategy_id=strategy.id, success=False, message="User declined recovery")

        return await self.execute_recovery(strategy.id, True)

    async def _run(self, strategy_id: RecoveryStrategyId) -> str:
        if strategy_id == RecoveryStrategyId.S1:
            outcome = await run_ppid_scan_and_cleanup()
            return f"Registry reconciled: {outcome['removed']} removed, {outcome['orphans']} orphans"

        if strategy_id == RecoveryStrategyId.S2:
            hook_error = await self._close_sessions()
            cleanup = await cleanup_orphans()
            if hook_error:
                raise RecoveryError(f"Session cleanup failed: {hook_error}")
            return f"Sessions reset, {cleanup.cleaned} orphans cleaned, {cleanup.failed} failed"

        if strategy_id == RecoveryStrategyId.S4 and self._restart_handler is None:
            raise RecoveryError("No restart handler registered")

        hook_error = await self._close_sessions()
        terminated, failed = await self._terminate_all()
        cleared = get_process_registry().clear_all()
        summary = f"{terminated} processes terminated, {cleared} registry entries cleared"

        if strategy_id == RecoveryStrategyId.S3:
            if failed:
                raise RecoveryError(f"{failed} processes could not be terminated; {summary}")
            if hook_error:
                raise RecoveryError(f"Session cleanup failed: {hook_error}")
            return summary

        mark_clean_exit()
        try:
            await _maybe_await(self._restart_handler())
        except Exception as e:
            raise RecoveryError(f"Restart failed: {e}") from e
        return f"Restart requested; {summary}"

    async def _close_sessions(self) -> Optional[str]:
        if self._session_cleanup is None:
            logger.debug("[Health][Recovery] No session cleanup hook registered")
            return None
        try:
            await _maybe_await(self._session_cleanup())
        except Exception as e:
            logger.error(f"[Health][Recovery] Session cleanup hook failed: {e}")
            return str(e)
        return None

    async def _terminate_all(self) -> Tuple[int, int]:
        """SIGTERM every managed process, escalating to SIGKILL after the kill timeout."""
        ops = get_platform_ops()
        pids: List[int] = [e.pid for e in get_process_registry().get_all_processes() if e.pid]
        for proc in await get_running_managed_processes():
            if proc["pid"] not in pids:
                pids.append(proc["pid"])

        terminated = failed = 0
        for pid in pids:
            if not ops.is_process_alive(pid):
                continue
            try:
                await asyncio.wait_for(ops.kill_process(pid, SIGTERM), timeout=self.settings.kill_timeout)
                terminated += 1
                continue
            except (asyncio.TimeoutError, ProcessKillError) as e:
                logger.warning(f"[Health][Recovery] SIGTERM did not stop {pid} ({e or 'timeout'}), escalating")
            if await force_kill_process(pid):
                terminated += 1
            else:
                failed += 1
        return terminated, failed

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    def get_recovery_stats(self) -> Dict[str, Any]:
        now = time.monotonic()
        return {
            "errorCount": self._error_count,
            "totalAttempts": self._total_attempts,
            "successfulAttempts": self._successful_attempts,
            "canRecover": self.can_recover(),
            "secondsSinceLastRecovery": (now - self._last_recovery_at) if self._last_recovery_at is not None else None,
            "suppressedStrategies": [s.value for s, until in self._suppressed_until.items() if until > now],
            "history": [r.to_dict() for r in self._history],
        }


# =============================================================================
# Global Instance
# =============================================================================

_manager: Optional[RecoveryManager] = None


def get_recovery_manager() -> RecoveryManager:
    global _manager
    if _manager is None:
        _manager = RecoveryManager()
    return _manager


def reset_recovery_manager() -> None:
    global _manager
    _manager = None


def select_recovery_strategy(consecutive_failures: int, source: str) -> Optional[RecoveryStrategyId]:
    return get_recovery_manager().select_recovery_strategy(consecutive_failures, source)


def inject_session_cleanup(fn: Optional[SessionCleanupFn]) -> None:
    get_recovery_manager().inject_session_cleanup(fn)


def can_recover() -> bool:
    return get_recovery_manager().can_recover()


def update_error_count(count: int) -> None:
    get_recovery_manager().update_error_count(count)


def reset_dialog_suppression(strategy_id: Optional[RecoveryStrategyId] = None) -> None:
    get_recovery_manager().reset_dialog_suppression(strategy_id)


def get_recovery_stats() -> Dict[str, Any]:
    return get_recovery_manager().get_recovery_stats()


async def execute_recovery(strategy_id: Union[RecoveryStrategyId, str], user_consented: bool = False) -> RecoveryResult:
    return await get_recovery_manager().execute_recovery(strategy_id, user_consented)


async def execute_recovery_with_prompt(strategy_id: Union[RecoveryStrategyId, str],
                                       message: Optional[str] = None) -> RecoveryResult:
    return await get_recovery_manager().execute_recovery_with_prompt(strategy_id, message)
