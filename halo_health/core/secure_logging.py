"""
Sanitization helpers for health logs and diagnostic text.

Event messages, probe errors and config details can carry agent output,
user paths or provider credentials. Everything that reaches a log line or a
report passes through one of these helpers first.

Usage:
    from halo_health.core.secure_logging import sanitize_for_log, mask_sensitive, redact_secrets

    logger.warning(f"[Health][Events] {sanitize_for_log(event.message)}")
    logger.debug(f"[Health][ConfigProbe] Credential {mask_sensitive(token)}")
"""

import re
from typing import Any, Optional

LOG_FIELD_LIMIT = 200
MASK = "****"

# Control characters, newlines and ESC included
_UNPRINTABLE = re.compile(r'[\x00-\x1f\x7f]')

# Credential-looking substrings inside free text
_SECRET_PATTERNS = (
    # Anthropic / OpenAI style keys
    (re.compile(r'\b(sk-[A-Za-z0-9_\-]{4})[A-Za-z0-9_\-]{8,}'), r'\1****'),
    # Authorization headers
    (re.compile(r'(?i)\b(bearer)\s+[A-Za-z0-9._\-+/=]{8,}'), r'\1 ****'),
    # key=value / key: value pairs
    (
        re.compile(r'(?i)\b(api[_-]?key|access[_-]?token|refresh[_-]?token|token|secret|password)'
                   r'(["\']?\s*[:=]\s*["\']?)[^\s"\',;&]+'),
        r'\1\2****',
    ),
    # Credentials embedded in URLs
    (re.compile(r'(?i)\b([a-z][a-z0-9+.\-]*://)[^/\s:@]+:[^/\s@]+@'), r'\1****@'),
)


def redact_secrets(text: str) -> str:
    """Replace credential-looking substrings in free text with masks."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text


def sanitize_for_log(value: Any, limit: int = LOG_FIELD_LIMIT) -> str:
    """Single-line, secret-free, bounded rendering of ``value`` for a log field."""
    flattened = _UNPRINTABLE.sub('', str(value))
    return redact_secrets(flattened)[:limit]


def mask_sensitive(value: Optional[Any], keep: int = 4) -> str:
    """Show only the first ``keep`` characters of a credential.

    Values too short to keep a prefix (and missing values) are fully masked.
    """
    text = "" if value is None else str(value)
    if len(text) <= keep:
        return MASK
    return f"{text[:keep]}{MASK}"
