"""Exceptions raised inside the health system."""

from typing import Optional


class HealthSystemError(Exception):
    """Base class for health system errors."""


class ProcessKillError(HealthSystemError):
    """A process was still alive after a termination signal was sent."""

    def __init__(self, pid: int, signal_name: str, detail: Optional[str] = None):
        self.pid = pid
        self.signal_name = signal_name
        message = f"Failed to terminate process {pid} with {signal_name}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class RegistryCorruptError(HealthSystemError):
    """The persisted process registry could not be parsed."""


class RecoveryError(HealthSystemError):
    """A recovery strategy failed while executing."""


class ProcessScanError(HealthSystemError):
    """A process enumeration command timed out or could not be started."""
