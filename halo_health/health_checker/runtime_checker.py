"""
Runtime Checker
===============

Two check modes over one reconciliation algorithm:

PASSIVE fallback polling (every ~120s):
    Reads only state that already exists in memory: registry statistics,
    recent critical events, the consecutive error count and this process's
    memory. No subprocesses, no HTTP. Reports only on a status transition.
    The poll loop is a plain asyncio task; it is cancelled on stop and
    never keeps the host alive on its own.

ACTIVE immediate check (user- or event-triggered):
    PPID scan of the host's children, classification by expected process
    name, reconciliation against the registry (dead entries removed, true
    orphans counted), service reachability probes, full snapshot.

Immediate checks are single-flight with a cool-down: callers arriving while
a check runs, or within the cool-down after it started, share its result.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import psutil

from halo_health.config import HealthSettings, get_settings
from halo_health.core.exceptions import ProcessScanError
from halo_health.core.types import (
    EventCategory,
    HealthEventType,
    HealthStatus,
    ImmediateCheckResult,
    ProcessCheckStatus,
    ProcessType,
    RegistryCleanup,
    ServiceCheckStatus,
    ServiceInfo,
)
from halo_health.health_checker.event_bus import (
    emit_health_event,
    emit_service_unresponsive,
    get_recent_events,
    get_total_error_count,
)
from halo_health.health_checker.probes.service_probe import (
    HTTP_SERVER_PROBE,
    ROUTER_PROBE,
    check_service,
)
from halo_health.process_guardian.platform import get_platform_ops
from halo_health.process_guardian.registry import get_process_registry

logger = logging.getLogger(__name__)

HealthChangeCallback = Callable[[HealthStatus, str], None]
ServiceInfoProvider = Callable[[], Optional[ServiceInfo]]

_RECENT_CRITICAL_WINDOW = 60.0

# Snapshot keys for the two embedded services
ROUTER_KEY = "protocolRouter"
HTTP_SERVER_KEY = "httpServer"


def process_memory_mb() -> float:
    """Resident memory of the host process in MB."""
    try:
        return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)
    except psutil.Error as e:
        logger.debug(f"[Health][Runtime] Memory read failed: {e}")
        return 0.0


@dataclass
class ReconcileOutcome:
    """Result of one PPID scan reconciled against the registry."""
    actual: Dict[ProcessType, List[int]] = field(default_factory=dict)
    removed: int = 0
    orphans: int = 0
    scan_failed: bool = False


class RuntimeChecker:
    """Passive poller plus single-flight active checker."""

    def __init__(self, settings: Optional[HealthSettings] = None):
        self._settings = settings
        self._poll_task: Optional[asyncio.Task] = None
        self._callback: Optional[HealthChangeCallback] = None
        self._last_known_status = HealthStatus.HEALTHY
        self._last_check_time: Optional[float] = None

        # Single-flight guard
        self._inflight: Optional[asyncio.Future] = None
        self._inflight_started: float = 0.0
        self._scan_count = 0

        self._service_providers: Dict[str, Tuple[str, Optional[ServiceInfoProvider]]] = {
            ROUTER_KEY: (ROUTER_PROBE, None),
            HTTP_SERVER_KEY: (HTTP_SERVER_PROBE, None),
        }

    @property
    def settings(self) -> HealthSettings:
        return self._settings or get_settings()

    @property
    def scan_count(self) -> int:
        """Number of immediate checks that actually ran."""
        return self._scan_count

    def set_service_info_providers(
        self,
        router: Optional[ServiceInfoProvider] = None,
        http_server: Optional[ServiceInfoProvider] = None,
    ) -> None:
        self._service_providers[ROUTER_KEY] = (ROUTER_PROBE, router)
        self._service_providers[HTTP_SERVER_KEY] = (HTTP_SERVER_PROBE, http_server)

    # -------------------------------------------------------------------------
    # Passive polling
    # -------------------------------------------------------------------------

    def start_fallback_polling(self, callback: HealthChangeCallback) -> None:
        if self.is_polling_active():
            logger.info("[Health][Runtime] Fallback polling already running")
            return
        self._callback = callback
        self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())
        logger.info(f"[Health][Runtime] Fallback polling started ({self.settings.fallback_poll_interval:.0f}s interval)")

    def stop_fallback_polling(self) -> None:
        if self._poll_task is not None:
            if not self._poll_task.done() and not self._poll_task.get_loop().is_closed():
                self._poll_task.cancel()
            self._poll_task = None
            self._callback = None
            logger.info("[Health][Runtime] Fallback polling stopped")

    def is_polling_active(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    async def _poll_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.fallback_poll_interval)
            try:
                self.perform_fallback_check()
            except Exception as e:
                logger.error(f"[Health][Runtime] Fallback check failed: {e}")

    def perform_fallback_check(self) -> HealthStatus:
        """Collect in-memory state and report a status transition, if any."""
        settings = self.settings
        issues: List[str] = []

        stats = get_process_registry().get_registry_stats()
        if stats["orphanProcesses"] > 0:
            issues.append(f"{stats['orphanProcesses']} orphan processes in registry")

        cutoff = time.time() - _RECENT_CRITICAL_WINDOW
        recent_critical = [
            e for e in get_recent_events()
            if e.category == EventCategory.CRITICAL and e.timestamp >= cutoff
        ]
        if recent_critical:
            issues.append(f"{len(recent_critical)} critical events in last minute")

        total_errors = get_total_error_count()
        if total_errors > 0:
            issues.append(f"{total_errors} consecutive errors")

        memory_mb = process_memory_mb()
        if memory_mb > settings.memory_critical_mb:
            issues.append(f"Critical memory usage: {memory_mb:.0f}MB")
        elif memory_mb > settings.memory_warning_mb:
            issues.append(f"High memory usage: {memory_mb:.0f}MB")

        if recent_critical or total_errors >= settings.error_threshold or memory_mb > settings.memory_critical_mb:
            new_status = HealthStatus.UNHEALTHY
        elif issues:
            new_status = HealthStatus.DEGRADED
        else:
            new_status = HealthStatus.HEALTHY

        if new_status != self._last_known_status:
            message = "; ".join(issues) if issues else "All checks passed"
            if self._callback is not None:
                self._callback(new_status, message)
            self._last_known_status = new_status

        logger.debug(f"[Health][Runtime] Passive check complete: {new_status.value}")
        return new_status

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def _reconcile(self) -> ReconcileOutcome:
        """PPID scan, drop dead registry entries, count unregistered children."""
        outcome = ReconcileOutcome(actual={t: [] for t in ProcessType})
        ops = get_platform_ops()
        registry = get_process_registry()

        try:
            children = await ops.find_child_processes(os.getpid())
        except ProcessScanError as e:
            logger.warning(f"[Health][Runtime] PPID scan unavailable: {e}")
            outcome.scan_failed = True
            children = []
        except Exception as e:
            logger.error(f"[Health][Runtime] PPID scan failed: {e}")
            outcome.scan_failed = True
            children = []

        for process_type in ProcessType:
            names = self.settings.names_for(process_type.value)
            outcome.actual[process_type] = [c.pid for c in children if c.name in names]

        logger.debug(
            "[Health][Runtime] PPID scan: "
            + ", ".join(f"{len(pids)} {t.value}" for t, pids in outcome.actual.items())
        )

        registered = registry.get_current_processes()
        for entry in registered:
            if not entry.pid or entry.pid in outcome.actual[entry.type]:
                continue
            # Not our child any more; only drop it if the OS agrees it is gone
            if ops.is_process_alive(entry.pid):
                continue
            logger.info(f"[Health][Runtime] Dead {entry.type.value} process: {entry.id} (PID: {entry.pid})")
            registry.unregister_process(entry.id, entry.type)
            outcome.removed += 1

        for process_type, pids in outcome.actual.items():
            registered_pids = {e.pid for e in registered if e.type == process_type and e.pid}
            for pid in pids:
                if pid not in registered_pids:
                    logger.warning(f"[Health][Runtime] Orphan {process_type.value} process detected: PID {pid}")
                    outcome.orphans += 1

        if outcome.orphans:
            emit_health_event(
                HealthEventType.ORPHAN_DETECTED,
                EventCategory.WARNING,
                "runtime-checker",
                f"{outcome.orphans} unregistered child processes",
                {"orphans": outcome.orphans},
            )
        return outcome

    async def run_ppid_scan_and_cleanup(self) -> Dict[str, Any]:
        """Event-driven reconciliation without service probes."""
        logger.info("[Health][Runtime] Running event-driven PPID scan...")
        outcome = await self._reconcile()
        logger.info(f"[Health][Runtime] PPID scan complete: removed={outcome.removed}, orphans={outcome.orphans}")
        return {"removed": outcome.removed, "orphans": outcome.orphans, "scanFailed": outcome.scan_failed}

    # -------------------------------------------------------------------------
    # Immediate check
    # -------------------------------------------------------------------------

    async def run_immediate_check(self) -> ImmediateCheckResult:
        """Single-flight active check; see module docstring."""
        current = time.monotonic()
        if self._inflight is not None:
            if not self._inflight.done():
                logger.debug("[Health][Runtime] Check already running, waiting...")
                return await asyncio.shield(self._inflight)
            if current - self._inflight_started < self.settings.immediate_check_cooldown:
                logger.debug("[Health][Runtime] Debounced: returning cached result")
                return self._inflight.result()

        self._inflight_started = current
        self._inflight = asyncio.ensure_future(self._do_immediate_check())
        return await asyncio.shield(self._inflight)

    async def _probe_service(self, key: str) -> Tuple[ServiceCheckStatus, Optional[str]]:
        probe_name, provider = self._service_providers[key]
        status = ServiceCheckStatus()
        if provider is None:
            return status, None
        try:
            info = provider()
        except Exception as e:
            logger.warning(f"[Health][Runtime] {probe_name} info unavailable: {e}")
            return status, None
        if info is None or not info.running or not info.port:
            return status, None

        status.port = info.port
        result = await check_service(probe_name, info.port, timeout=self.settings.service_probe_timeout)
        status.responsive = result.healthy
        status.response_time = result.data.get("responseTime")
        status.error = result.data.get("error")
        if result.healthy:
            return status, None
        return status, f"{probe_name} not responding: {status.error or 'unknown'}"

    async def _do_immediate_check(self) -> ImmediateCheckResult:
        self._scan_count += 1
        timestamp = time.time()
        self._last_check_time = timestamp
        issues: List[str] = []

        outcome = await self._reconcile()
        if outcome.scan_failed:
            issues.append("PPID scan failed")
        if outcome.removed:
            issues.append(f"Cleaned {outcome.removed} dead process entries")
        if outcome.orphans:
            issues.append(f"{outcome.orphans} orphan processes detected")

        services: Dict[str, ServiceCheckStatus] = {}
        has_service_issues = False
        for key in (ROUTER_KEY, HTTP_SERVER_KEY):
            status, issue = await self._probe_service(key)
            services[key] = status
            if issue:
                issues.append(issue)
                has_service_issues = True
                emit_service_unresponsive(self._service_providers[key][0], issue, expected=True)

        memory_mb = process_memory_mb()
        if memory_mb > self.settings.memory_warning_mb:
            issues.append(f"High memory usage: {memory_mb:.0f}MB")

        registered = get_process_registry().get_current_processes()
        processes: Dict[str, ProcessCheckStatus] = {}
        for process_type, pids in outcome.actual.items():
            expected = sum(1 for e in registered if e.type == process_type)
            processes[process_type.value] = ProcessCheckStatus(
                expected=expected,
                actual=len(pids),
                pids=list(pids),
                healthy=expected == len(pids),
            )

        # Dead-entry cleanup alone never makes the snapshot unhealthy
        healthy = not issues or (outcome.removed > 0 and len(issues) == 1 and not has_service_issues)

        result = ImmediateCheckResult(
            timestamp=timestamp,
            processes=processes,
            services=services,
            issues=issues,
            healthy=healthy,
            registry_cleanup=RegistryCleanup(removed=outcome.removed, orphans=outcome.orphans),
        )
        logger.info(f"[Health][Runtime] Immediate check: {'healthy' if healthy else 'unhealthy'} ({len(issues)} issues)")
        return result

    def get_runtime_status(self) -> Dict[str, Any]:
        return {
            "status": self._last_known_status.value,
            "isPollingActive": self.is_polling_active(),
            "lastCheckTime": self._last_check_time,
        }


# =============================================================================
# Global Instance
# =============================================================================

_checker: Optional[RuntimeChecker] = None


def get_runtime_checker() -> RuntimeChecker:
    global _checker
    if _checker is None:
        _checker = RuntimeChecker()
    return _checker


def reset_runtime_checker() -> None:
    global _checker
    if _checker is not None:
        _checker.stop_fallback_polling()
    _checker = None


def start_fallback_polling(callback: HealthChangeCallback) -> None:
    get_runtime_checker().start_fallback_polling(callback)


def stop_fallback_polling() -> None:
    get_runtime_checker().stop_fallback_polling()


def is_polling_active() -> bool:
    return get_runtime_checker().is_polling_active()


def set_service_info_providers(
    router: Optional[ServiceInfoProvider] = None,
    http_server: Optional[ServiceInfoProvider] = None,
) -> None:
    get_runtime_checker().set_service_info_providers(router=router, http_server=http_server)


async def run_immediate_check() -> ImmediateCheckResult:
    return await get_runtime_checker().run_immediate_check()


async def run_ppid_scan_and_cleanup() -> Dict[str, Any]:
    return await get_runtime_checker().run_ppid_scan_and_cleanup()


def get_runtime_status() -> Dict[str, Any]:
    return get_runtime_checker().get_runtime_status()
