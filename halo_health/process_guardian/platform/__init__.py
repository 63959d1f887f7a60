"""
Platform Abstraction Layer - process operations.

Detects the operating system once and hands every caller the same
PlatformProcessOps implementation.

Usage:
    from halo_health.process_guardian.platform import get_platform_ops

    ops = get_platform_ops()
    children = await ops.find_child_processes(os.getpid())
"""

import logging
import platform
from enum import Enum
from typing import Optional

from halo_health.process_guardian.platform.base import (
    SIGKILL,
    SIGTERM,
    PlatformProcessOps,
    resolve_signal,
)

logger = logging.getLogger(__name__)


class SupportedPlatform(Enum):
    """Platform families with a process-ops implementation."""
    MACOS = "macos"
    WINDOWS = "windows"
    LINUX = "linux"
    UNKNOWN = "unknown"


def detect_platform() -> SupportedPlatform:
    system = platform.system().lower()
    if system == "darwin":
        return SupportedPlatform.MACOS
    if system == "windows":
        return SupportedPlatform.WINDOWS
    if system == "linux":
        return SupportedPlatform.LINUX
    return SupportedPlatform.UNKNOWN


_platform_ops: Optional[PlatformProcessOps] = None


def get_platform_ops() -> PlatformProcessOps:
    """Get or create the process-ops implementation for this OS."""
    global _platform_ops
    if _platform_ops is None:
        detected = detect_platform()
        if detected == SupportedPlatform.WINDOWS:
            from halo_health.process_guardian.platform.win32 import Win32ProcessOps
            _platform_ops = Win32ProcessOps()
        else:
            # Unknown Unix-likes still ship a POSIX ps
            from halo_health.process_guardian.platform.posix import PosixProcessOps
            _platform_ops = PosixProcessOps()
        logger.debug(f"[Health][Platform] Using {type(_platform_ops).__name__} ({detected.value})")
    return _platform_ops


def set_platform_ops(ops: Optional[PlatformProcessOps]) -> None:
    """Replace the process-ops implementation (None re-detects on next use)."""
    global _platform_ops
    _platform_ops = ops


__all__ = [
    "PlatformProcessOps",
    "SupportedPlatform",
    "SIGTERM",
    "SIGKILL",
    "detect_platform",
    "get_platform_ops",
    "set_platform_ops",
    "resolve_signal",
]
