"""
Core types and exceptions for the health system.

The orchestrator and recovery manager live in this package too but are
imported from their modules directly; they depend on the process guardian
and health checker, which in turn depend on the types defined here.
"""

from halo_health.core.exceptions import (
    HealthSystemError,
    ProcessKillError,
    ProcessScanError,
    RecoveryError,
    RegistryCorruptError,
)
from halo_health.core.types import (
    CleanupResult,
    EventCategory,
    HealthEvent,
    HealthEventType,
    HealthStatus,
    HealthSystemState,
    ImmediateCheckResult,
    ProbeResult,
    ProcessEntry,
    ProcessType,
    RecoveryResult,
    RecoveryStrategyId,
    Severity,
    ServiceInfo,
)

__all__ = [
    "CleanupResult",
    "EventCategory",
    "HealthEvent",
    "HealthEventType",
    "HealthStatus",
    "HealthSystemError",
    "HealthSystemState",
    "ImmediateCheckResult",
    "ProbeResult",
    "ProcessEntry",
    "ProcessKillError",
    "ProcessScanError",
    "ProcessType",
    "RecoveryError",
    "RecoveryResult",
    "RecoveryStrategyId",
    "RegistryCorruptError",
    "ServiceInfo",
    "Severity",
]
