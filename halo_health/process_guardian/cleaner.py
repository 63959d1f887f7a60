"""
Process Cleaner - Orphan process cleanup
========================================

Kills processes that belong to a previous (crashed) host instance using two
independent mechanisms:

1. PID-based: every orphan registry entry whose PID is still alive gets SIGTERM.
2. Args-based: every OS process carrying ``--halo-managed`` whose embedded
   ``--halo-instance=<id>`` is not the current instance gets SIGTERM. This
   covers a lost or corrupted registry.

Only processes from OLD instances are touched. All orphan registry entries
are dropped after the pass regardless of kill outcome so one unkillable
process cannot block every future check.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional

from halo_health.config import get_settings
from halo_health.core.exceptions import ProcessKillError
from halo_health.core.types import (
    CleanupDetail,
    CleanupResult,
    KillMethod,
    ProcessType,
)
from halo_health.process_guardian.platform import SIGKILL, SIGTERM, get_platform_ops
from halo_health.process_guardian.registry import get_process_registry

logger = logging.getLogger(__name__)


def build_managed_args(instance_id: str) -> List[str]:
    """Command-line marker every spawner appends to a managed child."""
    settings = get_settings()
    return [f"--{settings.managed_flag}", f"--{settings.instance_prefix}{instance_id}"]


def infer_process_type(command_line: str) -> ProcessType:
    """Best-effort process type for a process found by the args scan."""
    lowered = command_line.lower()
    if "claude" in lowered or "cli.js" in lowered:
        return ProcessType.AGENT_SESSION
    if "tunnel" in lowered or "cloudflared" in lowered:
        return ProcessType.TUNNEL
    # Agent sessions are by far the most common managed child
    return ProcessType.AGENT_SESSION


def _instance_pattern() -> "re.Pattern[str]":
    return re.compile(re.escape(get_settings().instance_prefix) + r"([a-f0-9-]+)")


async def cleanup_orphans() -> CleanupResult:
    """
    Clean up processes left behind by previous host instances.

    Idempotent: a second call with nothing left to clean returns
    ``cleaned == 0`` and ``failed == 0``.
    """
    result = CleanupResult()
    registry = get_process_registry()
    current_instance_id = registry.current_instance_id
    if not current_instance_id:
        logger.warning("[Health][Cleaner] Cannot cleanup - no current instance ID")
        return result

    ops = get_platform_ops()
    settings = get_settings()

    # Phase 1: registry PIDs
    orphan_entries = registry.get_orphan_processes()
    logger.info(f"[Health][Cleaner] Found {len(orphan_entries)} orphan entries in registry")

    for entry in orphan_entries:
        if not entry.pid or not ops.is_process_alive(entry.pid):
            continue
        try:
            await ops.kill_process(entry.pid, SIGTERM)
        except ProcessKillError as e:
            logger.error(f"[Health][Cleaner] Failed to kill PID {entry.pid}: {e}")
            result.failed += 1
            continue
        result.cleaned += 1
        result.details.append(CleanupDetail(pid=entry.pid, type=entry.type, method=KillMethod.PID))
        logger.info(f"[Health][Cleaner] Killed orphan by PID: {entry.pid} ({entry.type.value})")

    # Phase 2: args scan fallback
    current_marker = f"{settings.instance_prefix}{current_instance_id}"
    handled = result.handled_pids()
    try:
        managed = await ops.find_by_args(settings.managed_flag)
    except Exception as e:
        logger.error(f"[Health][Cleaner] Args-based scan failed: {e}")
        managed = []
    logger.info(f"[Health][Cleaner] Found {len(managed)} managed processes by args scan")

    for proc in managed:
        if current_marker in proc.command_line or proc.pid in handled:
            continue
        if not ops.is_process_alive(proc.pid):
            continue
        try:
            await ops.kill_process(proc.pid, SIGTERM)
        except ProcessKillError as e:
            logger.error(f"[Health][Cleaner] Failed to kill PID {proc.pid} (args): {e}")
            result.failed += 1
            continue
        result.cleaned += 1
        result.details.append(CleanupDetail(
            pid=proc.pid,
            type=infer_process_type(proc.command_line),
            method=KillMethod.ARGS,
        ))
        logger.info(f"[Health][Cleaner] Killed orphan by args: {proc.pid}")

    registry.clear_orphan_entries()

    logger.info(f"[Health][Cleaner] Cleanup complete: {result.cleaned} cleaned, {result.failed} failed")
    return result


async def force_kill_process(pid: int) -> bool:
    """SIGKILL a process that ignored SIGTERM. True if it is gone afterwards."""
    ops = get_platform_ops()
    if not ops.is_process_alive(pid):
        return True
    try:
        await ops.kill_process(pid, SIGKILL)
    except ProcessKillError as e:
        logger.error(f"[Health][Cleaner] Force kill failed for PID {pid}: {e}")
        return False
    logger.info(f"[Health][Cleaner] Force killed PID: {pid}")
    return True


async def get_running_managed_processes() -> List[Dict[str, Any]]:
    """All live processes carrying the management marker."""
    settings = get_settings()
    pattern = _instance_pattern()
    processes = await get_platform_ops().find_by_args(settings.managed_flag)

    running: List[Dict[str, Any]] = []
    for proc in processes:
        match = pattern.search(proc.command_line)
        running.append({
            "pid": proc.pid,
            "instanceId": match.group(1) if match else None,
            "commandLine": proc.command_line,
        })
    return running


async def is_managed_process(pid: int) -> bool:
    processes = await get_platform_ops().find_by_args(get_settings().managed_flag)
    return any(p.pid == pid for p in processes)


async def count_residual_orphans(current_instance_id: Optional[str] = None) -> int:
    """Managed processes still running that belong to another instance."""
    if current_instance_id is None:
        current_instance_id = get_process_registry().current_instance_id
    running = await get_running_managed_processes()
    return sum(1 for p in running if p["instanceId"] != current_instance_id)


async def verify_cleanup() -> bool:
    """Re-scan after a cleanup pass. Reports, never blocks."""
    remaining = await count_residual_orphans()
    if remaining:
        logger.warning(f"[Health][Cleaner] {remaining} orphan processes still running")
        return False
    return True
