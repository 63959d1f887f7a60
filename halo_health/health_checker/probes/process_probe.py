"""Process Probe - PPID scan reconciled against the registry."""

from halo_health.core.types import ProbeResult, Severity

PROBE_NAME = "process"


async def run_process_probe() -> ProbeResult:
    # runtime_checker imports this package; resolve at call time
    from halo_health.health_checker.runtime_checker import run_ppid_scan_and_cleanup

    outcome = await run_ppid_scan_and_cleanup()
    removed, orphans = outcome["removed"], outcome["orphans"]

    if outcome["scanFailed"]:
        return ProbeResult.degraded(PROBE_NAME, "Process scan unavailable; registry not reconciled", **outcome)
    if orphans:
        return ProbeResult(
            name=PROBE_NAME,
            healthy=False,
            severity=Severity.WARNING,
            message=f"{orphans} unregistered child processes",
            data=dict(outcome),
        )
    message = f"Removed {removed} dead registry entries" if removed else "Child processes match registry"
    return ProbeResult(name=PROBE_NAME, healthy=True, severity=Severity.INFO, message=message, data=dict(outcome))
