"""
Halo Health - self-healing supervisor for the Halo desktop host.
================================================================

Tracks the agent-session and tunnel child processes the host spawns,
detects dead, unresponsive or orphaned dependents across restarts, and
drives a bounded, escalating recovery with user consent for anything
disruptive.

Host integration:
    import halo_health

    halo_health.init_instance_id()                  # first line of startup, synchronous
    halo_health.set_session_cleanup_fn(close_all_sessions)
    halo_health.set_consent_prompt(ask_user)        # async (strategy, message) -> bool
    await halo_health.initialize_health_system()

    # on spawn / exit of a managed child
    halo_health.register_process(ProcessEntry(...))
    halo_health.unregister_process(conversation_id, ProcessType.AGENT_SESSION)

    # UI boundary
    halo_health.get_health_status()
    await halo_health.run_immediate_check()
    await halo_health.export_report()

    halo_health.shutdown_health_system()            # records a clean exit
"""

from halo_health.config.health_settings import __version__
from halo_health.config import (
    HealthSettings,
    configure_health_logging,
    get_settings,
    reset_settings,
    set_settings,
)
from halo_health.core.exceptions import (
    HealthSystemError,
    ProcessKillError,
    ProcessScanError,
    RecoveryError,
    RegistryCorruptError,
)
from halo_health.core.orchestrator import (
    HealthOrchestrator,
    get_health_state,
    get_health_status,
    get_orchestrator,
    handle_status_change,
    init_instance_id,
    initialize_health_system,
    on_agent_error,
    on_process_exit,
    on_status_change,
    set_consent_prompt,
    set_restart_handler,
    set_session_cleanup_fn,
    shutdown_health_system,
    trigger_recovery,
    trigger_recovery_with_prompt,
)
from halo_health.core.recovery_manager import (
    RECOVERY_STRATEGIES,
    RecoveryManager,
    RecoveryStrategy,
    can_recover,
    execute_recovery,
    get_recovery_stats,
    select_recovery_strategy,
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
    ServiceInfo,
    Severity,
)
from halo_health.diagnostics import (
    collect_diagnostic_report,
    export_report,
    format_report_as_text,
    sanitize_report,
)
from halo_health.health_checker import (
    emit_health_event,
    get_recent_events,
    get_runtime_status,
    on_health_event,
    run_immediate_check,
    run_quick_health_check,
    run_startup_checks,
    set_service_info_providers,
)
from halo_health.process_guardian import (
    build_managed_args,
    cleanup_orphans,
    force_kill_process,
    get_current_instance_id,
    get_current_processes,
    get_orphan_processes,
    get_registry_stats,
    register_process,
    unregister_process,
    verify_cleanup,
    was_last_exit_clean,
)

__all__ = [
    "__version__",
    # Config
    "HealthSettings",
    "configure_health_logging",
    "get_settings",
    "reset_settings",
    "set_settings",
    # Errors
    "HealthSystemError",
    "ProcessKillError",
    "ProcessScanError",
    "RecoveryError",
    "RegistryCorruptError",
    # Types
    "CleanupResult",
    "EventCategory",
    "HealthEvent",
    "HealthEventType",
    "HealthStatus",
    "HealthSystemState",
    "ImmediateCheckResult",
    "ProbeResult",
    "ProcessEntry",
    "ProcessType",
    "RecoveryResult",
    "RecoveryStrategyId",
    "ServiceInfo",
    "Severity",
    # Lifecycle / orchestrator
    "HealthOrchestrator",
    "get_orchestrator",
    "init_instance_id",
    "initialize_health_system",
    "shutdown_health_system",
    "get_health_state",
    "get_health_status",
    "handle_status_change",
    "on_agent_error",
    "on_process_exit",
    "on_status_change",
    "set_consent_prompt",
    "set_restart_handler",
    "set_session_cleanup_fn",
    "trigger_recovery",
    "trigger_recovery_with_prompt",
    # Recovery
    "RECOVERY_STRATEGIES",
    "RecoveryManager",
    "RecoveryStrategy",
    "can_recover",
    "execute_recovery",
    "get_recovery_stats",
    "select_recovery_strategy",
    # Process guardian
    "build_managed_args",
    "cleanup_orphans",
    "force_kill_process",
    "get_current_instance_id",
    "get_current_processes",
    "get_orphan_processes",
    "get_registry_stats",
    "register_process",
    "unregister_process",
    "verify_cleanup",
    "was_last_exit_clean",
    # Health checks
    "emit_health_event",
    "get_recent_events",
    "get_runtime_status",
    "on_health_event",
    "run_immediate_check",
    "run_quick_health_check",
    "run_startup_checks",
    "set_service_info_providers",
    # Diagnostics
    "collect_diagnostic_report",
    "export_report",
    "format_report_as_text",
    "sanitize_report",
]
