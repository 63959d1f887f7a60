"""
Platform Process Operations - shared contract.

One implementation per OS family sits behind this interface; nothing
outside ``process_guardian.platform`` branches on the operating system.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import psutil

from halo_health.config import HealthSettings, get_settings
from halo_health.core.types import ChildProcessInfo, ProcessInfo

logger = logging.getLogger(__name__)

SIGTERM = "SIGTERM"
SIGKILL = "SIGKILL"

_VERIFY_POLL_INTERVAL = 0.1


class PlatformProcessOps(ABC):
    """
    Capability interface for OS process introspection.

    Contract:
    - Enumeration shells out to OS tooling bounded by the subprocess
      timeout; a timeout yields an empty list.
    - ``is_process_alive`` never raises.
    - ``kill_process`` raises ProcessKillError only when the process is
      confirmed alive after the signal (goal-based, locale independent).
    """

    def __init__(self, settings: Optional[HealthSettings] = None):
        self._settings = settings

    @property
    def settings(self) -> HealthSettings:
        return self._settings or get_settings()

    @abstractmethod
    async def find_by_args(self, pattern: str) -> List[ProcessInfo]:
        """Find processes whose command line contains ``pattern``."""

    @abstractmethod
    async def find_child_processes(self, parent_pid: int) -> List[ChildProcessInfo]:
        """Find direct children of ``parent_pid`` (PPID scan).

        Raises ProcessScanError when the enumeration command times out, so an
        empty list always means "no children".
        """

    @abstractmethod
    async def kill_process(self, pid: int, signal_name: str = SIGTERM) -> None:
        """Send ``signal_name`` to ``pid`` and verify it is gone."""

    def is_process_alive(self, pid: Optional[int]) -> bool:
        """Signal-0 style liveness probe. Zombies count as dead."""
        if not pid or pid <= 0:
            return False
        try:
            if not psutil.pid_exists(pid):
                return False
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.ZombieProcess):
            return False
        except psutil.AccessDenied:
            # Exists but owned by someone else
            return True
        except Exception as e:
            logger.debug(f"[Health][Platform] Liveness check failed for {pid}: {e}")
            return False

    async def wait_for_exit(self, pid: int, grace: Optional[float] = None) -> bool:
        """Poll until ``pid`` is gone or ``grace`` seconds elapse."""
        deadline = time.monotonic() + (self.settings.kill_verify_grace if grace is None else grace)
        while True:
            if not self.is_process_alive(pid):
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(_VERIFY_POLL_INTERVAL)


def resolve_signal(signal_name: str) -> int:
    """Map a signal name to its number on this platform."""
    sig = getattr(signal, signal_name, None)
    if sig is None:
        # Windows has no SIGKILL; SIGTERM is the hardest os.kill supports there
        sig = signal.SIGTERM
    return int(sig)
