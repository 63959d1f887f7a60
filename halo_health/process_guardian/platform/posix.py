"""
Platform-specific process operations for macOS and Linux.

Uses ``ps`` for process discovery and ``os.kill`` for signalling.
"""

from __future__ import annotations

import logging
import os
from typing import List

from halo_health.core.async_subprocess import run_command
from halo_health.core.exceptions import ProcessKillError, ProcessScanError
from halo_health.core.types import ChildProcessInfo, ProcessInfo
from halo_health.process_guardian.platform.base import (
    SIGTERM,
    PlatformProcessOps,
    resolve_signal,
)

logger = logging.getLogger(__name__)


def _basename(command: str) -> str:
    return os.path.basename(command.rstrip("/")) if command else ""


class PosixProcessOps(PlatformProcessOps):
    """POSIX implementation of platform process operations."""

    async def find_by_args(self, pattern: str) -> List[ProcessInfo]:
        output = await run_command(
            ["ps", "-A", "-o", "pid=", "-o", "args="],
            timeout=self.settings.subprocess_timeout,
            label="ps (args scan)",
        )
        if output is None or not output.stdout.strip():
            return []

        own_pid = os.getpid()
        results: List[ProcessInfo] = []
        for line in output.stdout.splitlines():
            parts = line.strip().split(None, 1)
            if len(parts) < 2:
                continue
            try:
                pid = int(parts[0])
            except ValueError:
                continue
            command_line = parts[1]
            if pid == own_pid or pattern not in command_line:
                continue
            results.append(ProcessInfo(
                pid=pid,
                command_line=command_line,
                name=_basename(command_line.split()[0]),
            ))
        return results

    async def find_child_processes(self, parent_pid: int) -> List[ChildProcessInfo]:
        output = await run_command(
            ["ps", "-A", "-o", "pid=", "-o", "ppid=", "-o", "comm="],
            timeout=self.settings.subprocess_timeout,
            label="ps (ppid scan)",
        )
        if output is None:
            raise ProcessScanError("ps (ppid scan) timed out or failed to start")
        if not output.stdout.strip():
            return []

        results: List[ChildProcessInfo] = []
        for line in output.stdout.splitlines():
            parts = line.strip().split(None, 2)
            if len(parts) < 3:
                continue
            try:
                pid, ppid = int(parts[0]), int(parts[1])
            except ValueError:
                continue
            if ppid != parent_pid:
                continue
            results.append(ChildProcessInfo(pid=pid, ppid=ppid, name=_basename(parts[2])))
        return results

    async def kill_process(self, pid: int, signal_name: str = SIGTERM) -> None:
        try:
            os.kill(pid, resolve_signal(signal_name))
        except ProcessLookupError:
            logger.debug(f"[Health][Posix] Process {pid} already gone")
            return
        except PermissionError as e:
            if not self.is_process_alive(pid):
                return
            raise ProcessKillError(pid, signal_name, str(e)) from e

        if await self.wait_for_exit(pid):
            logger.info(f"[Health][Posix] Killed process {pid} ({signal_name})")
            return
        raise ProcessKillError(pid, signal_name, "still alive after signal")
