"""
Platform-specific process operations for Windows.

Uses PowerShell (CIM) for process discovery and taskkill for termination.
"""

from __future__ import annotations

import json
import logging
from typing import Any, List

from halo_health.core.async_subprocess import run_command
from halo_health.core.exceptions import ProcessKillError, ProcessScanError
from halo_health.core.types import ChildProcessInfo, ProcessInfo
from halo_health.process_guardian.platform.base import (
    SIGKILL,
    SIGTERM,
    PlatformProcessOps,
)

logger = logging.getLogger(__name__)


def _powershell(script: str) -> List[str]:
    return ["powershell", "-NoProfile", "-NonInteractive", "-Command", script]


def _parse_json_rows(stdout: str) -> List[dict]:
    """ConvertTo-Json emits an object for one row and an array for many."""
    text = stdout.strip()
    if not text:
        return []
    try:
        parsed: Any = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"[Health][Win32] Unparseable PowerShell output: {e}")
        return []
    rows = parsed if isinstance(parsed, list) else [parsed]
    return [row for row in rows if isinstance(row, dict)]


class Win32ProcessOps(PlatformProcessOps):
    """Windows implementation of platform process operations."""

    async def find_by_args(self, pattern: str) -> List[ProcessInfo]:
        safe_pattern = pattern.replace("'", "''")
        script = (
            "Get-CimInstance Win32_Process | "
            f"Where-Object {{ $_.CommandLine -like '*{safe_pattern}*' }} | "
            "Select-Object ProcessId, Name, CommandLine | ConvertTo-Json -Compress"
        )
        output = await run_command(_powershell(script), timeout=self.settings.subprocess_timeout,
                                   label="powershell (args scan)")
        if output is None:
            return []

        results: List[ProcessInfo] = []
        for row in _parse_json_rows(output.stdout):
            pid = row.get("ProcessId")
            if not pid:
                continue
            command_line = row.get("CommandLine") or ""
            # The PowerShell host itself carries the pattern in its own command line
            if "Get-CimInstance" in command_line:
                continue
            results.append(ProcessInfo(pid=int(pid), command_line=command_line, name=row.get("Name") or ""))
        return results

    async def find_child_processes(self, parent_pid: int) -> List[ChildProcessInfo]:
        script = (
            "Get-CimInstance Win32_Process | "
            f"Where-Object {{ $_.ParentProcessId -eq {int(parent_pid)} }} | "
            "Select-Object ProcessId, ParentProcessId, Name | ConvertTo-Json -Compress"
        )
        output = await run_command(_powershell(script), timeout=self.settings.subprocess_timeout,
                                   label="powershell (ppid scan)")
        if output is None:
            raise ProcessScanError("powershell (ppid scan) timed out or failed to start")

        results: List[ChildProcessInfo] = []
        for row in _parse_json_rows(output.stdout):
            pid = row.get("ProcessId")
            if not pid:
                continue
            name = row.get("Name") or ""
            if name.lower() == "powershell.exe":
                continue
            results.append(ChildProcessInfo(
                pid=int(pid),
                ppid=int(row.get("ParentProcessId") or parent_pid),
                name=name,
            ))
        return results

    async def kill_process(self, pid: int, signal_name: str = SIGTERM) -> None:
        # /F forces termination (SIGKILL equivalent), /T takes the child tree
        argv = ["taskkill"]
        if signal_name == SIGKILL:
            argv.append("/F")
        argv += ["/PID", str(pid), "/T"]

        output = await run_command(argv, timeout=self.settings.kill_timeout, label="taskkill")
        if output is not None and output.returncode == 0:
            logger.info(f"[Health][Win32] Killed process {pid}")

        # Verify by outcome instead of parsing localized taskkill messages
        if await self.wait_for_exit(pid):
            return
        raise ProcessKillError(pid, signal_name, "still alive after taskkill")
