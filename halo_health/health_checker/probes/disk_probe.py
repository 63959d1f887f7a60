"""Disk Probe - free space on the volume holding the host data directory."""

import logging
from pathlib import Path
from typing import Optional

import psutil

from halo_health.config import get_settings
from halo_health.core.types import ProbeResult, Severity

logger = logging.getLogger(__name__)

PROBE_NAME = "disk"

_MB = 1024 * 1024


def _existing_ancestor(path: Path) -> Path:
    # The data dir may not exist yet on first launch
    for candidate in (path, *path.parents):
        if candidate.exists():
            return candidate
    return Path(path.anchor or "/")


async def run_disk_probe(path: Optional[Path] = None) -> ProbeResult:
    settings = get_settings()
    target = _existing_ancestor(Path(path or settings.data_dir))

    try:
        usage = psutil.disk_usage(str(target))
    except OSError as e:
        logger.warning(f"[Health][DiskProbe] disk_usage failed for {target}: {e}")
        return ProbeResult.degraded(PROBE_NAME, f"Disk check failed: {e}", path=str(target))

    free_mb = usage.free / _MB
    data = {"path": str(target), "freeMB": round(free_mb, 1), "percentUsed": usage.percent}

    if free_mb < settings.disk_critical_mb:
        return ProbeResult(name=PROBE_NAME, healthy=False, severity=Severity.CRITICAL,
                           message=f"Disk almost full: {free_mb:.0f}MB free", data=data)
    if free_mb < settings.disk_warning_mb:
        return ProbeResult(name=PROBE_NAME, healthy=False, severity=Severity.WARNING,
                           message=f"Low disk space: {free_mb:.0f}MB free", data=data)
    return ProbeResult(name=PROBE_NAME, healthy=True, severity=Severity.INFO,
                       message=f"{free_mb:.0f}MB free", data=data)
