"""
Health probes. Every probe is an async callable returning a ProbeResult and
never raising for expected faults.
"""

from halo_health.health_checker.probes.config_probe import run_config_probe
from halo_health.health_checker.probes.disk_probe import run_disk_probe
from halo_health.health_checker.probes.port_probe import run_port_probe
from halo_health.health_checker.probes.service_probe import (
    check_http_server,
    check_protocol_router,
    check_service,
)
from halo_health.health_checker.probes.process_probe import run_process_probe

__all__ = [
    "check_http_server",
    "check_protocol_router",
    "check_service",
    "run_config_probe",
    "run_disk_probe",
    "run_port_probe",
    "run_process_probe",
]
