"""
Diagnostic report sanitization.

Reports are meant to be pasted into bug trackers, so before display or
export every value is scrubbed:
- string values under credential-like keys are replaced outright
- API keys, bearer tokens and URL credentials inside free text are masked
- the user's home directory is collapsed to ``~``
"""

import re
from pathlib import Path
from typing import Any, Optional

from halo_health.core.secure_logging import redact_secrets

REDACTED = "[REDACTED]"

_SENSITIVE_KEY_RE = re.compile(
    r"(?i)(api[_-]?key|access[_-]?token|refresh[_-]?token|^token$|secret|password|credential|authorization)"
)


def _home_dir() -> Optional[str]:
    try:
        return str(Path.home())
    except RuntimeError:
        return None


def sanitize_text(text: str, home: Optional[str] = None) -> str:
    home = home if home is not None else _home_dir()
    if home and len(home) > 1:
        text = text.replace(home, "~")
    return redact_secrets(text)


def is_sensitive_key(key: str) -> bool:
    return bool(_SENSITIVE_KEY_RE.search(key))


def sanitize_report(report: Any, home: Optional[str] = None) -> Any:
    """Return a scrubbed deep copy of ``report`` (dicts, lists, scalars)."""
    home = home if home is not None else _home_dir()

    if isinstance(report, dict):
        cleaned = {}
        for key, value in report.items():
            # Only string payloads are secrets; flags like hasApiKey stay readable
            if isinstance(value, str) and is_sensitive_key(str(key)):
                cleaned[key] = REDACTED if value else value
            else:
                cleaned[key] = sanitize_report(value, home)
        return cleaned
    if isinstance(report, (list, tuple)):
        return [sanitize_report(item, home) for item in report]
    if isinstance(report, str):
        return sanitize_text(report, home)
    return report
