"""
Centralized Settings for the Halo Health System
===============================================

Single source of truth for every path, timeout and threshold used by the
process guardian, health checker, recovery manager and diagnostics. All
values are configurable via environment variables with sensible defaults.

Design Principles:
- All env vars use the HALO_ prefix for consistency
- Validation logs warnings but uses defaults (never crashes on bad config)
- Paths are derived from one data directory so tests can isolate state

Environment Variables:
----------------------

### Paths
- HALO_DATA_DIR: Host private data directory (default: ~/.halo)
- HALO_CONFIG_PATH: Host configuration file (default: <data>/config.json)
- HALO_HEALTH_DIR: Health state directory (default: <data>/health)

### Subprocess / Kill Timeouts
- HALO_SUBPROCESS_TIMEOUT: Hard timeout for process enumeration (default: 10.0s)
- HALO_KILL_TIMEOUT: Timeout for kill commands and SIGTERM grace (default: 5.0s)
- HALO_KILL_VERIFY_GRACE: Time to wait for a signalled process to vanish (default: 2.0s)

### Probe Timeouts
- HALO_SERVICE_PROBE_TIMEOUT: HTTP reachability probe timeout (default: 5.0s)
- HALO_PROBE_TIMEOUT: Per-probe timeout during startup checks (default: 10.0s)

### Runtime Checker
- HALO_FALLBACK_POLL_INTERVAL: Passive poll interval (default: 120.0s)
- HALO_IMMEDIATE_CHECK_COOLDOWN: Single-flight cool-down window (default: 2.0s)
- HALO_MEMORY_WARNING_MB / HALO_MEMORY_CRITICAL_MB (default: 500 / 1024)
- HALO_ERROR_THRESHOLD: Consecutive errors that mark the host unhealthy (default: 3)

### Orchestrator / Recovery
- HALO_SELF_FAILURE_THRESHOLD: Internal failures before self-disable (default: 5)
- HALO_RECOVERY_COOLDOWN: Minimum seconds between automatic recoveries (default: 30.0s)
- HALO_DIALOG_SUPPRESSION: Seconds a declined consent prompt stays suppressed (default: 300.0s)

### Startup Probes
- HALO_DISK_WARNING_MB / HALO_DISK_CRITICAL_MB (default: 1024 / 100)
- HALO_CHECK_PORTS: Comma separated local ports checked at startup
- HALO_RUN_STARTUP_CHECKS: Run startup probes during initialization (default: true)

Usage:
    from halo_health.config import get_settings

    settings = get_settings()
    await asyncio.wait_for(proc.communicate(), timeout=settings.subprocess_timeout)
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

__version__ = "1.4.0"


# =============================================================================
# DEFAULT VALUES
# =============================================================================

_DEFAULT_SUBPROCESS_TIMEOUT = 8.0
_DEFAULT_KILL_TIMEOUT = 5.0
_DEFAULT_KILL_VERIFY_GRACE = 2.0

_DEFAULT_SERVICE_PROBE_TIMEOUT = 5.0
_DEFAULT_PROBE_TIMEOUT = 10.0

_DEFAULT_FALLBACK_POLL_INTERVAL = 120.0
_DEFAULT_IMMEDIATE_CHECK_COOLDOWN = 2.0
_DEFAULT_MEMORY_WARNING_MB = 500.0
_DEFAULT_MEMORY_CRITICAL_MB = 1024.0
_DEFAULT_ERROR_THRESHOLD = 3

_DEFAULT_SELF_FAILURE_THRESHOLD = 5
_DEFAULT_RECOVERY_COOLDOWN = 30.0
_DEFAULT_DIALOG_SUPPRESSION = 300.0

_DEFAULT_DISK_WARNING_MB = 1024.0
_DEFAULT_DISK_CRITICAL_MB = 100.0
_DEFAULT_CHECK_PORTS: Tuple[int, ...] = (3456,)

# Marker flags passed on the command line of every managed child process
MANAGED_FLAG = "halo-managed"
INSTANCE_PREFIX = "halo-instance="


# =============================================================================
# ENV HELPERS
# =============================================================================

def _get_env_float(key: str, default: float, minimum: float = 0.0) -> float:
    """Get float from environment variable or use default."""
    val = os.environ.get(key)
    if not val:
        return default
    try:
        parsed = float(val)
    except ValueError:
        logger.warning(f"[Health][Settings] Invalid value for {key}={val!r}, using {default}")
        return default
    if parsed < minimum:
        logger.warning(f"[Health][Settings] {key}={parsed} below minimum {minimum}, using {default}")
        return default
    return parsed


def _get_env_int(key: str, default: int, minimum: int = 0) -> int:
    """Get int from environment variable or use default."""
    val = os.environ.get(key)
    if not val:
        return default
    try:
        parsed = int(val)
    except ValueError:
        logger.warning(f"[Health][Settings] Invalid value for {key}={val!r}, using {default}")
        return default
    if parsed < minimum:
        logger.warning(f"[Health][Settings] {key}={parsed} below minimum {minimum}, using {default}")
        return default
    return parsed


def _get_env_bool(key: str, default: bool) -> bool:
    val = os.environ.get(key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


def _get_env_ports(key: str, default: Tuple[int, ...]) -> Tuple[int, ...]:
    val = os.environ.get(key)
    if not val:
        return default
    ports: List[int] = []
    for chunk in val.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            port = int(chunk)
        except ValueError:
            logger.warning(f"[Health][Settings] Ignoring invalid port {chunk!r} in {key}")
            continue
        if 1 <= port <= 65535:
            ports.append(port)
    return tuple(ports) or default


def _expand_path(raw: str) -> Path:
    # Shells do not expand ~ inside environment variables
    return Path(raw).expanduser()


def resolve_data_dir() -> Path:
    """Resolve the host private data directory."""
    env_dir = os.environ.get("HALO_DATA_DIR", "").strip()
    if env_dir:
        return _expand_path(env_dir)
    return Path.home() / ".halo"


def _default_process_names() -> Dict[str, Tuple[str, ...]]:
    return {
        "agent-session": ("claude", "claude.exe"),
        "tunnel": ("cloudflared", "cloudflared.exe"),
    }


# =============================================================================
# SETTINGS
# =============================================================================

@dataclass
class HealthSettings:
    """
    Validated settings for the health system.

    Attributes are plain values so tests can build an instance directly
    and override only what they need.
    """
    data_dir: Path = field(default_factory=resolve_data_dir)
    config_path: Optional[Path] = None
    health_dir: Optional[Path] = None

    subprocess_timeout: float = _DEFAULT_SUBPROCESS_TIMEOUT
    kill_timeout: float = _DEFAULT_KILL_TIMEOUT
    kill_verify_grace: float = _DEFAULT_KILL_VERIFY_GRACE

    service_probe_timeout: float = _DEFAULT_SERVICE_PROBE_TIMEOUT
    probe_timeout: float = _DEFAULT_PROBE_TIMEOUT

    fallback_poll_interval: float = _DEFAULT_FALLBACK_POLL_INTERVAL
    immediate_check_cooldown: float = _DEFAULT_IMMEDIATE_CHECK_COOLDOWN
    memory_warning_mb: float = _DEFAULT_MEMORY_WARNING_MB
    memory_critical_mb: float = _DEFAULT_MEMORY_CRITICAL_MB
    error_threshold: int = _DEFAULT_ERROR_THRESHOLD

    self_failure_threshold: int = _DEFAULT_SELF_FAILURE_THRESHOLD
    recovery_cooldown: float = _DEFAULT_RECOVERY_COOLDOWN
    dialog_suppression: float = _DEFAULT_DIALOG_SUPPRESSION

    disk_warning_mb: float = _DEFAULT_DISK_WARNING_MB
    disk_critical_mb: float = _DEFAULT_DISK_CRITICAL_MB
    check_ports: Tuple[int, ...] = _DEFAULT_CHECK_PORTS
    run_startup_checks: bool = True

    managed_flag: str = MANAGED_FLAG
    instance_prefix: str = INSTANCE_PREFIX
    process_names: Dict[str, Tuple[str, ...]] = field(default_factory=_default_process_names)
    app_version: str = __version__

    def __post_init__(self) -> None:
        self.data_dir = Path(self.data_dir)
        if self.config_path is None:
            self.config_path = self.data_dir / "config.json"
        if self.health_dir is None:
            self.health_dir = self.data_dir / "health"

    @property
    def instance_file(self) -> Path:
        return self.health_dir / "instance.json"

    @property
    def registry_file(self) -> Path:
        return self.health_dir / "process-registry.json"

    @property
    def diagnostics_dir(self) -> Path:
        return self.health_dir / "diagnostics"

    @classmethod
    def from_env(cls) -> "HealthSettings":
        """Load settings from HALO_* environment variables."""
        data_dir = resolve_data_dir()
        config_env = os.environ.get("HALO_CONFIG_PATH", "").strip()
        health_env = os.environ.get("HALO_HEALTH_DIR", "").strip()

        return cls(
            data_dir=data_dir,
            config_path=_expand_path(config_env) if config_env else None,
            health_dir=_expand_path(health_env) if health_env else None,
            subprocess_timeout=_get_env_float("HALO_SUBPROCESS_TIMEOUT", _DEFAULT_SUBPROCESS_TIMEOUT, 0.1),
            kill_timeout=_get_env_float("HALO_KILL_TIMEOUT", _DEFAULT_KILL_TIMEOUT, 0.1),
            kill_verify_grace=_get_env_float("HALO_KILL_VERIFY_GRACE", _DEFAULT_KILL_VERIFY_GRACE),
            service_probe_timeout=_get_env_float("HALO_SERVICE_PROBE_TIMEOUT", _DEFAULT_SERVICE_PROBE_TIMEOUT, 0.1),
            probe_timeout=_get_env_float("HALO_PROBE_TIMEOUT", _DEFAULT_PROBE_TIMEOUT, 0.1),
            fallback_poll_interval=_get_env_float("HALO_FALLBACK_POLL_INTERVAL", _DEFAULT_FALLBACK_POLL_INTERVAL, 1.0),
            immediate_check_cooldown=_get_env_float("HALO_IMMEDIATE_CHECK_COOLDOWN", _DEFAULT_IMMEDIATE_CHECK_COOLDOWN),
            memory_warning_mb=_get_env_float("HALO_MEMORY_WARNING_MB", _DEFAULT_MEMORY_WARNING_MB, 1.0),
            memory_critical_mb=_get_env_float("HALO_MEMORY_CRITICAL_MB", _DEFAULT_MEMORY_CRITICAL_MB, 1.0),
            error_threshold=_get_env_int("HALO_ERROR_THRESHOLD", _DEFAULT_ERROR_THRESHOLD, 1),
            self_failure_threshold=_get_env_int("HALO_SELF_FAILURE_THRESHOLD", _DEFAULT_SELF_FAILURE_THRESHOLD, 1),
            recovery_cooldown=_get_env_float("HALO_RECOVERY_COOLDOWN", _DEFAULT_RECOVERY_COOLDOWN),
            dialog_suppression=_get_env_float("HALO_DIALOG_SUPPRESSION", _DEFAULT_DIALOG_SUPPRESSION),
            disk_warning_mb=_get_env_float("HALO_DISK_WARNING_MB", _DEFAULT_DISK_WARNING_MB),
            disk_critical_mb=_get_env_float("HALO_DISK_CRITICAL_MB", _DEFAULT_DISK_CRITICAL_MB),
            check_ports=_get_env_ports("HALO_CHECK_PORTS", _DEFAULT_CHECK_PORTS),
            run_startup_checks=_get_env_bool("HALO_RUN_STARTUP_CHECKS", True),
        )

    def names_for(self, process_type: str) -> Tuple[str, ...]:
        """Expected executable names for a managed process type."""
        return self.process_names.get(process_type, ())

    def describe(self) -> Dict[str, object]:
        return {
            "data_dir": str(self.data_dir),
            "config_path": str(self.config_path),
            "health_dir": str(self.health_dir),
            "platform": sys.platform,
            "subprocess_timeout": self.subprocess_timeout,
            "fallback_poll_interval": self.fallback_poll_interval,
            "immediate_check_cooldown": self.immediate_check_cooldown,
            "self_failure_threshold": self.self_failure_threshold,
        }


# =============================================================================
# Module-level singleton
# =============================================================================

_settings: Optional[HealthSettings] = None


def get_settings() -> HealthSettings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = HealthSettings.from_env()
        logger.debug(f"[Health][Settings] Loaded: {_settings.describe()}")
    return _settings


def set_settings(settings: HealthSettings) -> None:
    """Install an explicit settings instance (used by hosts and tests)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
