"""
Config Probe - host configuration file health check.

Checks that the config file exists, parses as JSON, carries the fields the
host cannot start without, and has credentials for the active AI source.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from halo_health.config import get_settings, parse_host_config
from halo_health.core.secure_logging import mask_sensitive
from halo_health.core.types import ProbeResult, Severity

logger = logging.getLogger(__name__)

PROBE_NAME = "config"


def _result(healthy: bool, severity: Severity, message: str, facts: Dict[str, Any],
            errors: List[str]) -> ProbeResult:
    return ProbeResult(
        name=PROBE_NAME,
        healthy=healthy,
        severity=severity,
        message=message,
        data={**facts, "errors": errors},
    )


async def run_config_probe(config_path: Optional[Path] = None) -> ProbeResult:
    path = Path(config_path or get_settings().config_path)
    facts = {
        "fileExists": False,
        "jsonValid": False,
        "criticalFieldsPresent": False,
        "apiKeyConfigured": False,
    }
    errors: List[str] = []

    try:
        if not path.exists():
            # Expected on first launch
            return _result(False, Severity.INFO, "Config file not found, will be created on first launch",
                           facts, ["Config file does not exist"])
        facts["fileExists"] = True

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except ValueError as e:
            errors.append(f"JSON parse error: {e}")
            return _result(False, Severity.CRITICAL, "Config file is corrupted (invalid JSON)", facts, errors)
        facts["jsonValid"] = True

        config, field_errors = parse_host_config(data)
        if config is None:
            errors.extend(field_errors)
            return _result(False, Severity.CRITICAL, "Config file missing critical fields", facts, errors)
        facts["criticalFieldsPresent"] = True

        credential = config.active_credential()
        if credential is None:
            return _result(True, Severity.WARNING, "No API key configured", facts, errors)
        facts["apiKeyConfigured"] = True
        logger.debug(f"[Health][ConfigProbe] Active source credential: {mask_sensitive(credential)}")

        return _result(True, Severity.INFO, "Config file is healthy", facts, errors)
    except OSError as e:
        logger.warning(f"[Health][ConfigProbe] Could not read {path}: {e}")
        return ProbeResult.degraded(PROBE_NAME, f"Config check failed: {e}", **facts, errors=[str(e)])
