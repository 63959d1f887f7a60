"""
Diagnostic report formatting and export.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import aiofiles

from halo_health.config import get_settings
from halo_health.diagnostics.collector import collect_diagnostic_report
from halo_health.diagnostics.sanitizer import sanitize_report

logger = logging.getLogger(__name__)

_RULE = "=" * 60


def format_report_as_text(report: Dict[str, Any]) -> str:
    """Plain-text rendering suitable for pasting into an issue."""
    config = report.get("config", {})
    processes = report.get("processes", {})
    health = report.get("health", {})
    system = report.get("system", {})
    memory = system.get("memory", {})

    lines: List[str] = [
        _RULE,
        "Halo Health Diagnostic Report",
        _RULE,
        f"Generated: {report.get('timestamp', '')}",
        f"Version:   {report.get('version', '')}",
        f"Platform:  {report.get('platform', '')} ({report.get('arch', '')})",
        "",
        "--- Configuration ---",
        f"AI Source:   {config.get('currentSource', 'none')}",
        f"Provider:    {config.get('provider', 'unknown')}",
        f"API Key:     {'configured' if config.get('hasApiKey') else 'missing'}",
        f"API Host:    {config.get('apiUrlHost') or '(default)'}",
        f"MCP Servers: {config.get('mcpServerCount', 0)}",
        "",
        "--- Processes ---",
        f"Registered:     {processes.get('registered', 0)}",
        f"Orphans found:  {processes.get('orphansFound', 0)}",
        f"Orphans killed: {processes.get('orphansCleaned', 0)}",
        "",
        "--- Health ---",
        f"Status:               {health.get('status', 'unknown')}",
        f"Last check:           {health.get('lastCheckTime', 'never')}",
        f"Consecutive failures: {health.get('consecutiveFailures', 0)}",
        f"Recovery attempts:    {health.get('recoveryAttempts', 0)}",
        "",
        "--- Recent Errors ---",
    ]

    errors = report.get("recentErrors") or []
    if errors:
        for err in errors:
            lines.append(f"[{err.get('time', '')}] {err.get('source', '')}: {err.get('message', '')}")
    else:
        lines.append("(none)")

    lines += [
        "",
        "--- System ---",
        f"Memory: {memory.get('free', '?')} free of {memory.get('total', '?')}",
        f"Uptime: {system.get('uptime', 0)}s",
        _RULE,
    ]
    return "\n".join(lines) + "\n"


def default_report_path() -> Path:
    stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    return get_settings().diagnostics_dir / f"health-report-{stamp}.txt"


async def export_report(path: Optional[Union[str, Path]] = None,
                        report: Optional[Dict[str, Any]] = None) -> str:
    """Collect (unless given), format and write a report. Returns the written path."""
    if report is None:
        report = await collect_diagnostic_report()
    else:
        report = sanitize_report(report)

    target = Path(path).expanduser() if path else default_report_path()
    target.parent.mkdir(parents=True, exist_ok=True)

    async with aiofiles.open(target, "w", encoding="utf-8") as f:
        await f.write(format_report_as_text(report))

    logger.info(f"[Health][Diagnostics] Report exported to {target}")
    return str(target)
