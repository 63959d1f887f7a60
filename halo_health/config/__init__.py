"""
Configuration package for the Halo health system.
=================================================

Key Modules:
- health_settings: Paths, timeouts and thresholds (HALO_* environment variables)
- logging_config: Colorized console logging for the health logger

Usage:
    from halo_health.config import get_settings, configure_health_logging

    configure_health_logging()
    settings = get_settings()
"""

from halo_health.config.health_settings import (
    INSTANCE_PREFIX,
    MANAGED_FLAG,
    HealthSettings,
    get_settings,
    reset_settings,
    resolve_data_dir,
    set_settings,
)
from halo_health.config.host_config import (
    HostConfig,
    load_host_config,
    parse_host_config,
)
from halo_health.config.logging_config import (
    HealthLogFormatter,
    configure_health_logging,
)


__all__ = [
    # Settings
    "HealthSettings",
    "get_settings",
    "set_settings",
    "reset_settings",
    "resolve_data_dir",
    "MANAGED_FLAG",
    "INSTANCE_PREFIX",
    # Host config
    "HostConfig",
    "load_host_config",
    "parse_host_config",
    # Logging
    "HealthLogFormatter",
    "configure_health_logging",
]
