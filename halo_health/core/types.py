# halo_health/core/types.py
"""
HealthTypes - Shared data model for the health system.

This module provides:
- ProcessType, HealthStatus, EventCategory, Severity: closed enums
- HealthEventType: every event kind that can travel on the event bus
- RecoveryStrategyId: the S1-S4 escalation ladder
- ProcessEntry: one managed child process in the registry
- HealthEvent / ProbeResult: immutable observations
- HealthSystemState: the orchestrator-owned state snapshot
- CleanupResult / RecoveryResult / ImmediateCheckResult: structured results

All ``to_dict`` methods emit the camelCase keys used by the host UI and
the persisted JSON files.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ProcessType(str, Enum):
    """Kinds of child process the host spawns and tracks."""
    AGENT_SESSION = "agent-session"
    TUNNEL = "tunnel"


class HealthStatus(str, Enum):
    """Coarse health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class EventCategory(str, Enum):
    """Health event categories."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class Severity(str, Enum):
    """Probe result severities."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class HealthEventType(str, Enum):
    """Event kinds carried by the health event bus."""
    AGENT_ERROR = "agent_error"
    PROCESS_EXIT = "process_exit"
    SERVICE_UNRESPONSIVE = "service_unresponsive"
    CONFIG_INVALID = "config_invalid"
    PROBE_FAILED = "probe_failed"
    ORPHAN_DETECTED = "orphan_detected"
    RECOVERY_SUCCESS = "recovery_success"
    RECOVERY_FAILED = "recovery_failed"
    STARTUP_CHECK = "startup_check"      # steady-state


# Info events that reset the consecutive failure counter
RESETTING_EVENT_TYPES = frozenset({
    HealthEventType.RECOVERY_SUCCESS,
    HealthEventType.STARTUP_CHECK,
})


class RecoveryStrategyId(str, Enum):
    """Recovery strategies ordered by destructiveness."""
    S1 = "S1"   # Reconcile registry against reality
    S2 = "S2"   # Close sessions and clean orphans
    S3 = "S3"   # Terminate every managed process (consent)
    S4 = "S4"   # Full application restart (consent)

    @property
    def level(self) -> int:
        return int(self.value[1:])

    @property
    def requires_consent(self) -> bool:
        return self in (RecoveryStrategyId.S3, RecoveryStrategyId.S4)


class KillMethod(str, Enum):
    """How the cleaner located a process it terminated."""
    PID = "pid"
    ARGS = "args"


def now() -> float:
    return time.time()


# =============================================================================
# Process Guardian
# =============================================================================

@dataclass
class ProcessEntry:
    """
    A managed child process recorded in the registry.

    Attributes:
        id: Caller-chosen identifier (conversation id, tunnel name)
        pid: OS process id, or None when the spawner could not obtain it
        type: What kind of process this is
        instance_id: Host instance that spawned the process
        started_at: Epoch seconds when the process was registered
    """
    id: str
    pid: Optional[int]
    type: ProcessType
    instance_id: str
    started_at: float = field(default_factory=now)

    @property
    def key(self) -> tuple:
        return (self.id, self.type)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pid": self.pid,
            "type": self.type.value,
            "instanceId": self.instance_id,
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ProcessEntry":
        pid = data.get("pid")
        return cls(
            id=str(data["id"]),
            pid=int(pid) if pid is not None else None,
            type=ProcessType(data["type"]),
            instance_id=str(data["instanceId"]),
            started_at=float(data.get("startedAt") or 0.0),
        )


@dataclass
class ProcessInfo:
    """A process found by command-line pattern."""
    pid: int
    command_line: str
    name: str = ""


@dataclass
class ChildProcessInfo:
    """A process found by parent PID."""
    pid: int
    ppid: int
    name: str = ""


@dataclass
class CleanupDetail:
    pid: int
    type: ProcessType
    method: KillMethod

    def to_dict(self) -> Dict[str, Any]:
        return {"pid": self.pid, "type": self.type.value, "method": self.method.value}


@dataclass
class CleanupResult:
    """Outcome of one orphan cleanup pass."""
    cleaned: int = 0
    failed: int = 0
    details: List[CleanupDetail] = field(default_factory=list)

    def handled_pids(self) -> set:
        return {d.pid for d in self.details}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cleaned": self.cleaned,
            "failed": self.failed,
            "details": [d.to_dict() for d in self.details],
        }


# =============================================================================
# Health Checker
# =============================================================================

@dataclass(frozen=True)
class HealthEvent:
    """An immutable health observation."""
    type: HealthEventType
    category: EventCategory
    timestamp: float
    source: str
    message: str
    data: Optional[Mapping[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "type": self.type.value,
            "category": self.category.value,
            "timestamp": self.timestamp,
            "source": self.source,
            "message": self.message,
        }
        if self.data is not None:
            result["data"] = dict(self.data)
        return result


@dataclass
class ProbeResult:
    """
    Result of a single probe invocation.

    Probes never raise; internal faults degrade to healthy=True with
    severity WARNING so a broken probe cannot trigger recovery.
    """
    name: str
    healthy: bool
    severity: Severity
    message: str
    timestamp: float = field(default_factory=now)
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def degraded(cls, name: str, message: str, **data: Any) -> "ProbeResult":
        return cls(name=name, healthy=True, severity=Severity.WARNING, message=message, data=dict(data))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "healthy": self.healthy,
            "severity": self.severity.value,
            "message": self.message,
            "timestamp": self.timestamp,
            "data": dict(self.data),
        }


@dataclass
class ServiceInfo:
    """What an intra-app service reports about itself."""
    running: bool
    port: Optional[int] = None


@dataclass
class ProcessCheckStatus:
    expected: int
    actual: int
    pids: List[int]
    healthy: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"expected": self.expected, "actual": self.actual, "pids": list(self.pids), "healthy": self.healthy}


@dataclass
class ServiceCheckStatus:
    port: Optional[int] = None
    responsive: bool = False
    response_time: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"port": self.port, "responsive": self.responsive}
        if self.response_time is not None:
            result["responseTime"] = self.response_time
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class RegistryCleanup:
    removed: int = 0
    orphans: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"removed": self.removed, "orphans": self.orphans}


@dataclass
class ImmediateCheckResult:
    """Snapshot produced by an active immediate check."""
    timestamp: float
    processes: Dict[str, ProcessCheckStatus]
    services: Dict[str, ServiceCheckStatus]
    issues: List[str]
    healthy: bool
    registry_cleanup: RegistryCleanup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "processes": {k: v.to_dict() for k, v in self.processes.items()},
            "services": {k: v.to_dict() for k, v in self.services.items()},
            "issues": list(self.issues),
            "healthy": self.healthy,
            "registryCleanup": self.registry_cleanup.to_dict(),
        }


@dataclass
class StartupCheckResult:
    status: HealthStatus
    probes: List[ProbeResult]
    duration: float
    timestamp: float = field(default_factory=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "probes": [p.to_dict() for p in self.probes],
            "duration": self.duration,
            "timestamp": self.timestamp,
        }


# =============================================================================
# Orchestrator / Recovery
# =============================================================================

@dataclass
class RecoveryResult:
    strategy_id: RecoveryStrategyId
    success: bool
    message: str
    timestamp: float = field(default_factory=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "strategyId": self.strategy_id.value,
            "success": self.success,
            "message": self.message,
            "timestamp": self.timestamp,
        }


@dataclass
class HealthSystemState:
    """Orchestrator-owned state. Mutated only through its event path."""
    status: HealthStatus = HealthStatus.HEALTHY
    instance_id: str = ""
    started_at: float = 0.0
    consecutive_failures: int = 0
    recovery_attempts: int = 0
    is_polling_active: bool = False
    is_enabled: bool = True
    recent_events: List[HealthEvent] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "instanceId": self.instance_id,
            "startedAt": self.started_at,
            "consecutiveFailures": self.consecutive_failures,
            "recoveryAttempts": self.recovery_attempts,
            "isPollingActive": self.is_polling_active,
            "isEnabled": self.is_enabled,
            "recentEvents": [e.to_dict() for e in self.recent_events],
        }
