"""
Diagnostics Collector - gathers a sanitized snapshot for bug reports.
"""

import logging
import os
import platform
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict

import psutil

from halo_health.config import get_settings, load_host_config
from halo_health.core.orchestrator import get_health_state
from halo_health.core.types import EventCategory
from halo_health.diagnostics.sanitizer import sanitize_report
from halo_health.health_checker.event_bus import get_recent_events
from halo_health.health_checker.runtime_checker import get_runtime_status
from halo_health.process_guardian import get_registry_stats

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 10

_EMPTY_CONFIG_SUMMARY = {
    "currentSource": "none",
    "provider": "unknown",
    "hasApiKey": False,
    "apiUrlHost": "",
    "mcpServerCount": 0,
}


def format_bytes(num_bytes: float) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num_bytes)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{value:.1f} {units[index]}"


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _process_uptime() -> int:
    try:
        return int(time.time() - psutil.Process(os.getpid()).create_time())
    except psutil.Error:
        return 0


async def collect_diagnostic_report() -> Dict[str, Any]:
    settings = get_settings()
    state = get_health_state()
    stats = get_registry_stats()
    runtime = get_runtime_status()

    host_config = load_host_config(settings.config_path)
    config_summary = host_config.summary() if host_config else dict(_EMPTY_CONFIG_SUMMARY)

    recent_errors = [
        {"time": _iso(e.timestamp), "source": e.source, "message": e.message}
        for e in get_recent_events()
        if e.category in (EventCategory.CRITICAL, EventCategory.WARNING)
    ][:MAX_REPORTED_ERRORS]

    memory = psutil.virtual_memory()
    last_check = runtime.get("lastCheckTime")

    raw_report = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
        "platform": sys.platform,
        "arch": platform.machine(),
        "config": config_summary,
        "processes": {
            "registered": stats["totalProcesses"],
            "orphansFound": stats["orphanProcesses"],
            "orphansCleaned": 0,
        },
        "health": {
            "status": state.status.value,
            "lastCheckTime": _iso(last_check) if last_check else "never",
            "consecutiveFailures": state.consecutive_failures,
            "recoveryAttempts": state.recovery_attempts,
        },
        "recentErrors": recent_errors,
        "system": {
            "memory": {
                "total": format_bytes(memory.total),
                "free": format_bytes(memory.available),
            },
            "uptime": _process_uptime(),
        },
    }

    logger.debug("[Health][Diagnostics] Report collected")
    return sanitize_report(raw_report)
