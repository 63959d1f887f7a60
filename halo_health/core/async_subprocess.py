"""
Bounded async subprocess execution.

Every call that shells out to OS tooling goes through ``run_command`` so
that a hung ``ps``/PowerShell invocation can never stall the event loop
beyond its timeout. A timeout or spawn failure resolves to ``None``
("no results"), never to an exception.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CommandOutput:
    returncode: int
    stdout: str
    stderr: str


async def run_command(
    argv: Sequence[str],
    timeout: float,
    label: Optional[str] = None,
) -> Optional[CommandOutput]:
    """
    Run ``argv`` and capture its output, bounded by ``timeout`` seconds.

    Returns:
        CommandOutput on completion (any exit code), None on timeout or
        when the executable could not be started.
    """
    name = label or argv[0]
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except (FileNotFoundError, PermissionError, OSError) as e:
        logger.warning(f"[Health][Subprocess] Could not start {name}: {e}")
        return None

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"[Health][Subprocess] {name} timed out after {timeout}s")
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        try:
            await asyncio.wait_for(proc.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            logger.debug(f"[Health][Subprocess] {name} did not exit after kill")
        return None

    return CommandOutput(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=stdout.decode(errors="replace") if stdout else "",
        stderr=stderr.decode(errors="replace") if stderr else "",
    )
