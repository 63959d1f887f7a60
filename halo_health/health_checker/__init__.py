"""
Health Checker - event bus, probes, startup and runtime checks.
"""

from halo_health.health_checker.event_bus import (
    HealthEventBus,
    emit_agent_error,
    emit_health_event,
    emit_process_exit,
    emit_recovery_result,
    emit_service_unresponsive,
    get_event_bus,
    get_recent_events,
    get_total_error_count,
    on_health_event,
    reset_event_bus,
)
from halo_health.health_checker.runtime_checker import (
    RuntimeChecker,
    get_runtime_checker,
    get_runtime_status,
    is_polling_active,
    reset_runtime_checker,
    run_immediate_check,
    run_ppid_scan_and_cleanup,
    set_service_info_providers,
    start_fallback_polling,
    stop_fallback_polling,
)
from halo_health.health_checker.startup_checker import (
    run_quick_health_check,
    run_startup_checks,
    safe_probe,
)

__all__ = [
    "HealthEventBus",
    "RuntimeChecker",
    "emit_agent_error",
    "emit_health_event",
    "emit_process_exit",
    "emit_recovery_result",
    "emit_service_unresponsive",
    "get_event_bus",
    "get_recent_events",
    "get_runtime_checker",
    "get_runtime_status",
    "get_total_error_count",
    "is_polling_active",
    "on_health_event",
    "reset_event_bus",
    "reset_runtime_checker",
    "run_immediate_check",
    "run_ppid_scan_and_cleanup",
    "run_quick_health_check",
    "run_startup_checks",
    "safe_probe",
    "set_service_info_providers",
    "start_fallback_polling",
    "stop_fallback_polling",
]
