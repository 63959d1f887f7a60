"""
Service Probes - reachability of the host's embedded HTTP services.

Any HTTP response (regardless of status code) means the service is
listening and its event loop is alive; only connection failures and
timeouts count as unresponsive.
"""

import asyncio
import logging
import time
from typing import Optional

import aiohttp

from halo_health.config import get_settings
from halo_health.core.types import ProbeResult, Severity

logger = logging.getLogger(__name__)

ROUTER_PROBE = "protocol-router"
HTTP_SERVER_PROBE = "http-server"


async def check_service(name: str, port: int, timeout: Optional[float] = None,
                        host: str = "127.0.0.1") -> ProbeResult:
    """GET http://host:port/ with a hard timeout."""
    timeout = timeout if timeout is not None else get_settings().service_probe_timeout
    url = f"http://{host}:{port}/"
    start = time.perf_counter()

    try:
        client_timeout = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=client_timeout) as session:
            async with session.get(url, allow_redirects=False) as resp:
                elapsed_ms = (time.perf_counter() - start) * 1000
                return ProbeResult(
                    name=name,
                    healthy=True,
                    severity=Severity.INFO,
                    message=f"{name} responded in {elapsed_ms:.0f}ms",
                    data={"port": port, "responseTime": round(elapsed_ms, 1),
                          "statusCode": resp.status, "error": None},
                )
    except asyncio.TimeoutError:
        error = f"Timeout after {timeout}s"
    except aiohttp.ClientError as e:
        error = str(e) or type(e).__name__
    except OSError as e:
        error = str(e)

    elapsed_ms = (time.perf_counter() - start) * 1000
    logger.debug(f"[Health][ServiceProbe] {name} on port {port} unresponsive: {error}")
    return ProbeResult(
        name=name,
        healthy=False,
        severity=Severity.CRITICAL,
        message=f"{name} not responding: {error}",
        data={"port": port, "responseTime": round(elapsed_ms, 1), "statusCode": None, "error": error},
    )


async def check_protocol_router(port: int) -> ProbeResult:
    return await check_service(ROUTER_PROBE, port)


async def check_http_server(port: int) -> ProbeResult:
    return await check_service(HTTP_SERVER_PROBE, port)
