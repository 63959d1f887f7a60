"""
Pytest configuration and shared fixtures for the Halo health system tests.

This file contains:
- Path setup so the package imports without installation
- An isolated data directory and fresh module singletons per test
- A scriptable fake of the platform process operations
"""

import asyncio
import sys
from pathlib import Path
from typing import List, Optional, Set, Tuple

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from halo_health.config import HealthSettings, reset_settings, set_settings  # noqa: E402
from halo_health.core.exceptions import ProcessKillError  # noqa: E402
from halo_health.core.orchestrator import reset_orchestrator  # noqa: E402
from halo_health.core.recovery_manager import reset_recovery_manager  # noqa: E402
from halo_health.core.types import ChildProcessInfo, ProcessInfo  # noqa: E402
from halo_health.health_checker.event_bus import reset_event_bus  # noqa: E402
from halo_health.health_checker.runtime_checker import reset_runtime_checker  # noqa: E402
from halo_health.process_guardian.platform import (  # noqa: E402
    SIGTERM,
    PlatformProcessOps,
    set_platform_ops,
)
from halo_health.process_guardian.registry import reset_process_registry  # noqa: E402


class FakePlatformOps(PlatformProcessOps):
    """In-memory process table driven by the test."""

    def __init__(self, settings: Optional[HealthSettings] = None):
        super().__init__(settings)
        self.children: List[ChildProcessInfo] = []
        self.managed: List[ProcessInfo] = []
        self.alive: Set[int] = set()
        self.unkillable: Set[int] = set()
        self.killed: List[Tuple[int, str]] = []
        self.child_scans = 0
        self.scan_delay = 0.0

    def add_child(self, pid: int, name: str) -> None:
        self.children.append(ChildProcessInfo(pid=pid, ppid=1, name=name))
        self.alive.add(pid)

    def add_managed(self, pid: int, instance_id: str, binary: str = "claude") -> None:
        self.managed.append(ProcessInfo(
            pid=pid,
            command_line=f"/usr/local/bin/{binary} --halo-managed --halo-instance={instance_id}",
            name=binary,
        ))
        self.alive.add(pid)

    async def find_by_args(self, pattern: str) -> List[ProcessInfo]:
        return [p for p in self.managed if pattern in p.command_line and p.pid in self.alive]

    async def find_child_processes(self, parent_pid: int) -> List[ChildProcessInfo]:
        self.child_scans += 1
        if self.scan_delay:
            await asyncio.sleep(self.scan_delay)
        return [c for c in self.children if c.pid in self.alive]

    async def kill_process(self, pid: int, signal_name: str = SIGTERM) -> None:
        self.killed.append((pid, signal_name))
        if pid in self.unkillable:
            raise ProcessKillError(pid, signal_name, "still alive")
        self.alive.discard(pid)

    def is_process_alive(self, pid: Optional[int]) -> bool:
        return pid in self.alive


def _reset_singletons() -> None:
    reset_orchestrator()
    reset_recovery_manager()
    reset_runtime_checker()
    reset_event_bus()
    reset_process_registry()
    set_platform_ops(None)


@pytest.fixture(scope="function")
def health_settings(tmp_path, monkeypatch):
    """Settings rooted in a temporary data dir, with fresh singletons."""
    monkeypatch.setenv("HALO_DATA_DIR", str(tmp_path))
    settings = HealthSettings(
        data_dir=tmp_path,
        run_startup_checks=False,
        check_ports=(),
        recovery_cooldown=0.0,
        kill_verify_grace=0.0,
    )
    _reset_singletons()
    set_settings(settings)
    yield settings
    _reset_singletons()
    reset_settings()


@pytest.fixture(scope="function")
def fake_ops(health_settings):
    """Install a FakePlatformOps as the platform implementation."""
    ops = FakePlatformOps(health_settings)
    set_platform_ops(ops)
    return ops


@pytest.fixture(scope="function")
def instance_id(health_settings):
    """Start an instance on the isolated registry."""
    from halo_health.process_guardian.registry import mark_instance_start
    return mark_instance_start()


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )
    config.addinivalue_line(
        "markers", "posix: mark test as requiring a POSIX ps"
    )


def pytest_report_header(config):
    """Add custom header to pytest report."""
    return [
        "Halo Health Test Suite",
        f"Project Root: {project_root}",
    ]
