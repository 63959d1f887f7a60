import logging
from pathlib import Path

import pytest

from halo_health.config import (
    HealthLogFormatter,
    HealthSettings,
    configure_health_logging,
    get_settings,
    reset_settings,
    resolve_data_dir,
)
from halo_health.config.logging_config import HEALTH_LOGGER_NAME


@pytest.fixture
def clean_env(monkeypatch):
    reset_settings()
    yield monkeypatch
    reset_settings()


def test_paths_derive_from_data_dir(tmp_path):
    settings = HealthSettings(data_dir=tmp_path)

    assert settings.config_path == tmp_path / "config.json"
    assert settings.instance_file == tmp_path / "health" / "instance.json"
    assert settings.registry_file == tmp_path / "health" / "process-registry.json"
    assert settings.diagnostics_dir == tmp_path / "health" / "diagnostics"


def test_from_env_reads_halo_variables(clean_env, tmp_path):
    clean_env.setenv("HALO_DATA_DIR", str(tmp_path))
    clean_env.setenv("HALO_HEALTH_DIR", str(tmp_path / "state"))
    clean_env.setenv("HALO_SUBPROCESS_TIMEOUT", "3.5")
    clean_env.setenv("HALO_SELF_FAILURE_THRESHOLD", "7")
    clean_env.setenv("HALO_CHECK_PORTS", "8080, 9090,bogus,70000")
    clean_env.setenv("HALO_RUN_STARTUP_CHECKS", "no")

    settings = get_settings()

    assert settings.data_dir == tmp_path
    assert settings.registry_file == tmp_path / "state" / "process-registry.json"
    assert settings.subprocess_timeout == 3.5
    assert settings.self_failure_threshold == 7
    assert settings.check_ports == (8080, 9090)
    assert settings.run_startup_checks is False
    assert get_settings() is settings


def test_invalid_values_fall_back_to_defaults(clean_env):
    clean_env.setenv("HALO_SUBPROCESS_TIMEOUT", "fast")
    clean_env.setenv("HALO_KILL_TIMEOUT", "-1")
    clean_env.setenv("HALO_ERROR_THRESHOLD", "0")

    settings = HealthSettings.from_env()
    defaults = HealthSettings()

    assert settings.subprocess_timeout == defaults.subprocess_timeout
    assert settings.kill_timeout == defaults.kill_timeout
    assert settings.error_threshold == defaults.error_threshold


def test_data_dir_defaults_to_home(clean_env):
    clean_env.delenv("HALO_DATA_DIR", raising=False)
    assert resolve_data_dir() == Path.home() / ".halo"


def test_data_dir_expands_user(clean_env):
    clean_env.setenv("HALO_DATA_DIR", "~/halo-test")
    assert resolve_data_dir() == Path.home() / "halo-test"


def test_process_names_per_type(tmp_path):
    settings = HealthSettings(data_dir=tmp_path)
    assert "claude" in settings.names_for("agent-session")
    assert "cloudflared" in settings.names_for("tunnel")
    assert settings.names_for("unknown") == ()


# =============================================================================
# Logging
# =============================================================================

def _record(level, message):
    return logging.LogRecord("halo_health.test", level, __file__, 1, message, None, None)


def test_plain_formatter_output():
    line = HealthLogFormatter(use_color=False).format(_record(logging.WARNING, "[Health][Test] hello"))
    assert line.endswith("WARNING  [Health][Test] hello")


def test_color_formatter_keeps_message():
    line = HealthLogFormatter(use_color=True).format(_record(logging.ERROR, "[Health][Test] boom"))
    assert "[Health][Test] boom" in line
    assert "\x1b[" in line


def test_configure_logging_is_idempotent():
    health_logger = logging.getLogger(HEALTH_LOGGER_NAME)
    saved = (list(health_logger.handlers), health_logger.level, health_logger.propagate)
    try:
        configure_health_logging(use_color=False)
        configure_health_logging(level=logging.DEBUG, use_color=False)

        ours = [h for h in health_logger.handlers if isinstance(h.formatter, HealthLogFormatter)]
        assert len(ours) == 1
        assert health_logger.level == logging.DEBUG

        configure_health_logging(use_color=False, force=True)
        ours = [h for h in health_logger.handlers if isinstance(h.formatter, HealthLogFormatter)]
        assert len(ours) == 1
    finally:
        health_logger.handlers[:] = saved[0]
        health_logger.setLevel(saved[1])
        health_logger.propagate = saved[2]
