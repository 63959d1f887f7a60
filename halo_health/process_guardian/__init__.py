"""
Process Guardian - registry, instance identity and orphan cleanup.
"""

from halo_health.process_guardian.cleaner import (
    build_managed_args,
    cleanup_orphans,
    count_residual_orphans,
    force_kill_process,
    get_running_managed_processes,
    infer_process_type,
    is_managed_process,
    verify_cleanup,
)
from halo_health.process_guardian.platform import get_platform_ops, set_platform_ops
from halo_health.process_guardian.registry import (
    InstanceGuardian,
    ProcessRegistry,
    clear_orphan_entries,
    get_current_instance_id,
    get_current_processes,
    get_orphan_processes,
    get_process_registry,
    get_registry_stats,
    mark_clean_exit,
    mark_instance_start,
    register_process,
    reset_process_registry,
    unregister_process,
    was_last_exit_clean,
)

__all__ = [
    "InstanceGuardian",
    "ProcessRegistry",
    "build_managed_args",
    "cleanup_orphans",
    "clear_orphan_entries",
    "count_residual_orphans",
    "force_kill_process",
    "get_current_instance_id",
    "get_current_processes",
    "get_orphan_processes",
    "get_platform_ops",
    "get_process_registry",
    "get_registry_stats",
    "get_running_managed_processes",
    "infer_process_type",
    "is_managed_process",
    "mark_clean_exit",
    "mark_instance_start",
    "register_process",
    "reset_process_registry",
    "set_platform_ops",
    "unregister_process",
    "verify_cleanup",
    "was_last_exit_clean",
]
