"""
Diagnostics - sanitized health reports for users and bug trackers.
"""

from halo_health.diagnostics.collector import collect_diagnostic_report, format_bytes
from halo_health.diagnostics.report import (
    default_report_path,
    export_report,
    format_report_as_text,
)
from halo_health.diagnostics.sanitizer import REDACTED, sanitize_report, sanitize_text

__all__ = [
    "REDACTED",
    "collect_diagnostic_report",
    "default_report_path",
    "export_report",
    "format_bytes",
    "format_report_as_text",
    "sanitize_report",
    "sanitize_text",
]
