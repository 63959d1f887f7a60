"""
Startup Checker - startup-time health checks.

Runs after the host UI is up; never blocks startup. All probes run
concurrently, each bounded by the probe timeout and wrapped so a probe
fault turns into a healthy/warning result instead of an exception.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from halo_health.config import get_settings
from halo_health.core.types import HealthStatus, ProbeResult, Severity, StartupCheckResult
from halo_health.health_checker.probes import (
    run_config_probe,
    run_disk_probe,
    run_port_probe,
    run_process_probe,
)
from halo_health.process_guardian import cleanup_orphans, was_last_exit_clean

logger = logging.getLogger(__name__)

ProbeFn = Callable[[], Awaitable[ProbeResult]]

DEFAULT_PROBES: Tuple[Tuple[str, ProbeFn], ...] = (
    ("config", run_config_probe),
    ("port", run_port_probe),
    ("disk", run_disk_probe),
    ("process", run_process_probe),
)


async def safe_probe(name: str, probe_fn: ProbeFn, timeout: Optional[float] = None) -> ProbeResult:
    """Run one probe; timeouts and faults degrade to healthy=True, severity=warning."""
    timeout = timeout if timeout is not None else get_settings().probe_timeout
    try:
        return await asyncio.wait_for(probe_fn(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[Health][Startup] {name} probe timed out after {timeout}s")
        return ProbeResult.degraded(name, "Probe failed: Timeout")
    except Exception as e:
        logger.error(f"[Health][Startup] {name} probe failed: {e}")
        return ProbeResult.degraded(name, f"Probe failed: {e}")


def determine_overall_status(probes: Sequence[ProbeResult]) -> HealthStatus:
    if any(not p.healthy and p.severity == Severity.CRITICAL for p in probes):
        return HealthStatus.UNHEALTHY
    if any(not p.healthy and p.severity == Severity.WARNING for p in probes):
        return HealthStatus.DEGRADED
    return HealthStatus.HEALTHY


def _log_probe(probe: ProbeResult) -> None:
    icon = "OK" if probe.healthy else ("FAIL" if probe.severity == Severity.CRITICAL else "WARN")
    errors = probe.data.get("errors") if probe.data else None
    detail = f" ({', '.join(errors)})" if not probe.healthy and errors else ""
    logger.info(f"[Health][Startup] {icon} {probe.name}: {probe.message}{detail}")


async def run_startup_checks(
    probes: Optional[Sequence[Tuple[str, ProbeFn]]] = None,
) -> StartupCheckResult:
    """
    Run every startup probe concurrently.

    If the previous run did not exit cleanly, a full orphan cleanup runs
    first so the process probe sees the post-cleanup state.
    """
    start = time.monotonic()
    results: List[ProbeResult] = []
    logger.info("[Health][Startup] Running startup checks...")

    try:
        if not was_last_exit_clean():
            logger.info("[Health][Startup] Last exit was not clean - running full cleanup")
            cleanup = await cleanup_orphans()
            logger.info(f"[Health][Startup] Cleanup: {cleanup.cleaned} cleaned, {cleanup.failed} failed")

        probe_list = probes if probes is not None else DEFAULT_PROBES
        results = list(await asyncio.gather(*(safe_probe(name, fn) for name, fn in probe_list)))
        for probe in results:
            _log_probe(probe)

        status = determine_overall_status(results)
        duration = time.monotonic() - start
        logger.info(f"[Health][Startup] Checks complete in {duration * 1000:.0f}ms - Status: {status.value}")
        return StartupCheckResult(status=status, probes=results, duration=duration)
    except Exception as e:
        # Never block the host on our own failure
        logger.error(f"[Health][Startup] Startup checks failed: {e}")
        return StartupCheckResult(status=HealthStatus.HEALTHY, probes=results,
                                  duration=time.monotonic() - start)


async def run_quick_health_check() -> Dict[str, object]:
    """Config-only check for callers that need an answer fast."""
    try:
        result = await run_config_probe()
    except Exception as e:
        logger.warning(f"[Health][Startup] Quick check failed: {e}")
        return {"healthy": True, "message": "Quick check failed, assuming healthy"}
    return {"healthy": result.healthy, "message": result.message}
