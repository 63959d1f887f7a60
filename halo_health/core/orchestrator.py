"""
Health Orchestrator
===================

Central coordination for the health system:
- owns the HealthSystemState and mutates it only from its event handler
- turns critical events into escalating recovery attempts
- reports status transitions to registered listeners (the host UI)
- protects the host from the health system itself: repeated internal
  failures disable the subsystem for the rest of the process lifetime

Lifecycle:
    init_instance_id()              # synchronous, first thing at startup
    await initialize_health_system()
    ...
    shutdown_health_system()        # stops polling, records a clean exit

State machine:
    critical event          -> consecutive_failures += 1, status = unhealthy
    warning while healthy   -> status = degraded
    recovery_success / startup_check (info)
                            -> consecutive_failures = 0, status = healthy
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from halo_health.config import HealthSettings, get_settings
from halo_health.core.recovery_manager import (
    CONSENT_REQUIRED_MESSAGE,
    ConsentPrompt,
    RecoveryManager,
    RestartHandler,
    SessionCleanupFn,
    get_recovery_manager,
)
from halo_health.core.types import (
    RESETTING_EVENT_TYPES,
    EventCategory,
    HealthEvent,
    HealthEventType,
    HealthStatus,
    HealthSystemState,
    RecoveryResult,
    RecoveryStrategyId,
    Severity,
    StartupCheckResult,
)
from halo_health.health_checker.event_bus import (
    MAX_RECENT_EVENTS,
    emit_agent_error,
    emit_health_event,
    emit_process_exit,
    emit_recovery_result,
    on_health_event,
)
from halo_health.health_checker.runtime_checker import get_runtime_checker
from halo_health.health_checker.startup_checker import run_startup_checks
from halo_health.process_guardian import get_process_registry

logger = logging.getLogger(__name__)

StatusListener = Callable[[Dict[str, Any]], None]


class HealthOrchestrator:
    """Owns HealthSystemState and drives recovery from health events."""

    def __init__(
        self,
        settings: Optional[HealthSettings] = None,
        recovery: Optional[RecoveryManager] = None,
    ):
        self._settings = settings
        self._recovery = recovery
        self._state = HealthSystemState()
        self._self_failures = 0
        self._listeners: List[StatusListener] = []
        self._session_cleanup: Optional[SessionCleanupFn] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._tasks: Set[asyncio.Task] = set()
        self._recovery_task: Optional[asyncio.Task] = None
        self._last_startup_check: Optional[StartupCheckResult] = None

    @property
    def settings(self) -> HealthSettings:
        return self._settings or get_settings()

    @property
    def recovery(self) -> RecoveryManager:
        return self._recovery or get_recovery_manager()

    @property
    def self_failures(self) -> int:
        return self._self_failures

    @property
    def last_startup_check(self) -> Optional[StartupCheckResult]:
        return self._last_startup_check

    # =========================================================================
    # Initialization
    # =========================================================================

    def init_instance_id(self) -> str:
        """Mark instance start. Must run synchronously before anything else."""
        registry = get_process_registry()
        instance_id = registry.guardian.mark_instance_start()
        self._state.instance_id = instance_id
        self._state.started_at = registry.guardian.started_at or time.time()
        logger.info(f"[Health][Orchestrator] Instance initialized: {instance_id[:8]}...")
        return instance_id

    async def initialize(self) -> None:
        """Wire event handling and start passive polling (after the UI is up)."""
        if not self._state.instance_id:
            logger.warning("[Health][Orchestrator] Instance ID not set - call init_instance_id() first")
            self.init_instance_id()

        if not self._state.is_enabled:
            logger.warning("[Health][Orchestrator] Health system disabled, not initializing")
            return

        logger.info("[Health][Orchestrator] Initializing health system...")
        try:
            if self._session_cleanup is not None:
                self.recovery.inject_session_cleanup(self._session_cleanup)

            if self._unsubscribe is None:
                self._unsubscribe = on_health_event(self.handle_health_event)

            get_runtime_checker().start_fallback_polling(self.handle_status_change)
            self._state.is_polling_active = True

            if self.settings.run_startup_checks:
                self._spawn(self._run_startup_checks(), "startup-checks")

            logger.info("[Health][Orchestrator] Health system initialized (event-driven mode)")
        except Exception as e:
            self._handle_self_error(e)

    async def _run_startup_checks(self) -> None:
        result = await run_startup_checks()
        self._last_startup_check = result

        for probe in result.probes:
            if probe.healthy:
                continue
            if probe.name == "config" and probe.severity == Severity.CRITICAL:
                emit_health_event(HealthEventType.CONFIG_INVALID, EventCategory.CRITICAL, "config",
                                  probe.message, probe.data)
            elif probe.severity == Severity.WARNING:
                emit_health_event(HealthEventType.PROBE_FAILED, EventCategory.WARNING, probe.name,
                                  probe.message, probe.data)
            elif probe.severity == Severity.CRITICAL:
                emit_health_event(HealthEventType.PROBE_FAILED, EventCategory.CRITICAL, probe.name,
                                  probe.message, probe.data)

        if result.status == HealthStatus.HEALTHY:
            emit_health_event(HealthEventType.STARTUP_CHECK, EventCategory.INFO, "startup",
                              f"Startup checks passed in {result.duration * 1000:.0f}ms")

    def set_session_cleanup_fn(self, fn: Optional[SessionCleanupFn]) -> None:
        self._session_cleanup = fn
        self.recovery.inject_session_cleanup(fn)

    def set_consent_prompt(self, fn: Optional[ConsentPrompt]) -> None:
        self.recovery.set_consent_prompt(fn)

    def set_restart_handler(self, fn: Optional[RestartHandler]) -> None:
        self.recovery.set_restart_handler(fn)

    def on_status_change(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # =========================================================================
    # Event handling
    # =========================================================================

    def handle_health_event(self, event: HealthEvent) -> None:
        if not self._state.is_enabled:
            return

        try:
            self._state.recent_events.insert(0, event)
            del self._state.recent_events[MAX_RECENT_EVENTS:]

            if event.category == EventCategory.INFO and event.type in RESETTING_EVENT_TYPES:
                self._state.consecutive_failures = 0
                self.recovery.update_error_count(0)
                self._set_status(HealthStatus.HEALTHY, event.message)

            elif event.category == EventCategory.CRITICAL:
                self._state.consecutive_failures += 1
                self.recovery.update_error_count(self._state.consecutive_failures)

                strategy_id = self.recovery.select_recovery_strategy(
                    self._state.consecutive_failures, event.source
                )
                if strategy_id and self.recovery.can_recover():
                    self._schedule_recovery(strategy_id, event.message)

                self._set_status(HealthStatus.UNHEALTHY, event.message)

            elif event.category == EventCategory.WARNING and self._state.status == HealthStatus.HEALTHY:
                self._set_status(HealthStatus.DEGRADED, event.message)
        except Exception as e:
            self._handle_self_error(e)

    def handle_status_change(self, status: HealthStatus, message: str) -> None:
        """Callback for the passive poller."""
        if not self._state.is_enabled:
            return
        try:
            self._set_status(HealthStatus(status), message)
        except Exception as e:
            self._handle_self_error(e)

    def _set_status(self, status: HealthStatus, reason: str) -> None:
        previous = self._state.status
        if status == previous:
            return
        self._state.status = status
        logger.info(f"[Health][Orchestrator] Status changed: {previous.value} -> {status.value}")

        payload = {
            "status": status.value,
            "previousStatus": previous.value,
            "reason": reason,
            "timestamp": time.time(),
        }
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"[Health][Orchestrator] Status listener failed: {e}")

    # =========================================================================
    # Recovery
    # =========================================================================

    def _spawn(self, coro: Awaitable[Any], name: str) -> Optional[asyncio.Task]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning(f"[Health][Orchestrator] No running event loop, skipping {name}")
            if asyncio.iscoroutine(coro):
                coro.close()
            return None
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _schedule_recovery(self, strategy_id: RecoveryStrategyId, message: str) -> None:
        if self._recovery_task is not None and not self._recovery_task.done():
            logger.info(f"[Health][Orchestrator] Recovery already running, not scheduling {strategy_id.value}")
            return
        logger.info(f"[Health][Orchestrator] Triggering recovery strategy: {strategy_id.value}")
        self._recovery_task = self._spawn(self._attempt_recovery(strategy_id, message), f"recovery {strategy_id.value}")

    async def _attempt_recovery(self, strategy_id: RecoveryStrategyId, message: str) -> None:
        self._state.recovery_attempts += 1
        try:
            if strategy_id.requires_consent:
                result = await self.recovery.execute_recovery_with_prompt(strategy_id, message)
            else:
                result = await self.recovery.execute_recovery(strategy_id, False)
        except Exception as e:
            logger.error(f"[Health][Orchestrator] Recovery error: {e}")
            return
        self._report(result)

    def _report(self, result: RecoveryResult) -> None:
        # A refused S3/S4 did nothing worth an event
        if not result.success and result.message == CONSENT_REQUIRED_MESSAGE:
            return
        emit_recovery_result(result)

    async def trigger_recovery(
        self,
        strategy_id: Union[RecoveryStrategyId, str],
        user_consented: bool = False,
    ) -> RecoveryResult:
        """Manual recovery; S3/S4 only run with ``user_consented=True``."""
        self._state.recovery_attempts += 1
        result = await self.recovery.execute_recovery(strategy_id, user_consented)
        self._report(result)
        return result

    async def trigger_recovery_with_prompt(
        self,
        strategy_id: Union[RecoveryStrategyId, str],
        message: Optional[str] = None,
    ) -> RecoveryResult:
        self._state.recovery_attempts += 1
        result = await self.recovery.execute_recovery_with_prompt(strategy_id, message)
        self._report(result)
        return result

    async def wait_for_background_tasks(self) -> None:
        """Wait for scheduled recoveries and startup checks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # =========================================================================
    # External event entry points
    # =========================================================================

    def on_agent_error(self, conversation_id: str, error: str) -> None:
        emit_agent_error(conversation_id, error)

    def on_process_exit(self, process_id: str, exit_code: Optional[int]) -> None:
        emit_process_exit(process_id, exit_code)

    # =========================================================================
    # Shutdown / status
    # =========================================================================

    def shutdown(self) -> None:
        logger.info("[Health][Orchestrator] Shutting down health system...")
        try:
            get_runtime_checker().stop_fallback_polling()
            self._state.is_polling_active = False
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None
            for task in list(self._tasks):
                task.cancel()
            get_process_registry().guardian.mark_clean_exit()
            logger.info("[Health][Orchestrator] Health system shut down")
        except Exception as e:
            logger.error(f"[Health][Orchestrator] Shutdown error: {e}")

    def get_health_state(self) -> HealthSystemState:
        """Snapshot copy of the state; callers cannot mutate the original."""
        return replace(
            self._state,
            is_polling_active=self.is_polling_active(),
            recent_events=list(self._state.recent_events),
        )

    def get_health_status(self) -> Dict[str, Any]:
        started_at = self._state.started_at
        return {
            "status": self._state.status.value,
            "instanceId": self._state.instance_id,
            "uptime": time.time() - started_at if started_at else 0.0,
            "consecutiveFailures": self._state.consecutive_failures,
            "recoveryAttempts": self._state.recovery_attempts,
            "isEnabled": self._state.is_enabled,
        }

    def is_polling_active(self) -> bool:
        return self._state.is_enabled and get_runtime_checker().is_polling_active()

    # =========================================================================
    # Self-protection
    # =========================================================================

    def _handle_self_error(self, error: Exception) -> None:
        self._self_failures += 1
        logger.error(f"[Health][Orchestrator] Self-failure {self._self_failures}: {error}")
        if self._self_failures >= self.settings.self_failure_threshold and self._state.is_enabled:
            logger.warning("[Health][Orchestrator] Too many self-failures, disabling health system")
            self._disable()

    def _disable(self) -> None:
        self._state.is_enabled = False
        get_runtime_checker().stop_fallback_polling()
        self._state.is_polling_active = False
        logger.warning("[Health][Orchestrator] Health system disabled due to repeated failures")


# =============================================================================
# Global Instance
# =============================================================================

_orchestrator: Optional[HealthOrchestrator] = None


def get_orchestrator() -> HealthOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = HealthOrchestrator()
    return _orchestrator


def reset_orchestrator() -> None:
    global _orchestrator
    _orchestrator = None


def init_instance_id() -> str:
    return get_orchestrator().init_instance_id()


async def initialize_health_system() -> None:
    await get_orchestrator().initialize()


def shutdown_health_system() -> None:
    get_orchestrator().shutdown()


def set_session_cleanup_fn(fn: Optional[SessionCleanupFn]) -> None:
    get_orchestrator().set_session_cleanup_fn(fn)


def set_consent_prompt(fn: Optional[ConsentPrompt]) -> None:
    get_orchestrator().set_consent_prompt(fn)


def set_restart_handler(fn: Optional[RestartHandler]) -> None:
    get_orchestrator().set_restart_handler(fn)


def on_status_change(listener: StatusListener) -> Callable[[], None]:
    return get_orchestrator().on_status_change(listener)


def on_agent_error(conversation_id: str, error: str) -> None:
    get_orchestrator().on_agent_error(conversation_id, error)


def on_process_exit(process_id: str, exit_code: Optional[int]) -> None:
    get_orchestrator().on_process_exit(process_id, exit_code)


def handle_status_change(status: HealthStatus, message: str) -> None:
    get_orchestrator().handle_status_change(status, message)


async def trigger_recovery(strategy_id: Union[RecoveryStrategyId, str],
                           user_consented: bool = False) -> RecoveryResult:
    return await get_orchestrator().trigger_recovery(strategy_id, user_consented)


async def trigger_recovery_with_prompt(strategy_id: Union[RecoveryStrategyId, str],
                                       message: Optional[str] = None) -> RecoveryResult:
    return await get_orchestrator().trigger_recovery_with_prompt(strategy_id, message)


def get_health_state() -> HealthSystemState:
    return get_orchestrator().get_health_state()


def get_health_status() -> Dict[str, Any]:
    return get_orchestrator().get_health_status()
