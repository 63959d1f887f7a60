"""
Port Probe - startup check that the host's well-known local ports are usable.

A port is fine when nothing listens on it or when the listener is this
process. Anything else (another app, a leftover instance) is a warning.
"""

import logging
import os
from typing import Dict, Iterable, List, Optional

import psutil

from halo_health.config import get_settings
from halo_health.core.types import ProbeResult, Severity

logger = logging.getLogger(__name__)

PROBE_NAME = "port"


def _listeners(ports: Iterable[int]) -> Dict[int, Optional[int]]:
    """Map each watched port that has a listener to the owning PID (None if hidden)."""
    wanted = set(ports)
    owners: Dict[int, Optional[int]] = {}
    for conn in psutil.net_connections(kind="inet"):
        if conn.status != psutil.CONN_LISTEN or not conn.laddr:
            continue
        if conn.laddr.port in wanted:
            owners.setdefault(conn.laddr.port, conn.pid)
    return owners


async def run_port_probe(ports: Optional[Iterable[int]] = None) -> ProbeResult:
    ports = tuple(ports if ports is not None else get_settings().check_ports)
    if not ports:
        return ProbeResult(name=PROBE_NAME, healthy=True, severity=Severity.INFO,
                           message="No ports configured", data={"ports": []})

    try:
        owners = _listeners(ports)
    except psutil.AccessDenied:
        # macOS needs root to list other users' sockets
        return ProbeResult.degraded(PROBE_NAME, "Port ownership not visible without elevated rights",
                                    ports=list(ports))

    own_pid = os.getpid()
    conflicts: List[Dict[str, Optional[int]]] = []
    for port in ports:
        if port in owners and owners[port] != own_pid:
            conflicts.append({"port": port, "pid": owners[port]})

    if conflicts:
        listed = ", ".join(str(c["port"]) for c in conflicts)
        return ProbeResult(
            name=PROBE_NAME,
            healthy=False,
            severity=Severity.WARNING,
            message=f"Port(s) in use by another process: {listed}",
            data={"ports": list(ports), "conflicts": conflicts},
        )
    return ProbeResult(name=PROBE_NAME, healthy=True, severity=Severity.INFO,
                       message="Ports available", data={"ports": list(ports), "conflicts": []})
