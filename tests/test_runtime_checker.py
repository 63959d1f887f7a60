import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from halo_health.core.exceptions import ProcessScanError
from halo_health.core.types import (
    EventCategory,
    HealthEventType,
    HealthStatus,
    ProbeResult,
    ProcessEntry,
    ProcessType,
    ServiceInfo,
    Severity,
)
from halo_health.health_checker import runtime_checker as runtime_module
from halo_health.health_checker.event_bus import emit_health_event, get_recent_events
from halo_health.health_checker.runtime_checker import RuntimeChecker
from halo_health.process_guardian.registry import get_current_processes, register_process


@pytest.fixture
def low_memory(monkeypatch):
    monkeypatch.setattr(runtime_module, "process_memory_mb", lambda: 64.0)


@pytest.fixture
def checker(health_settings, fake_ops, instance_id, low_memory):
    checker = RuntimeChecker()
    yield checker
    checker.stop_fallback_polling()


def _session(entry_id, pid, instance_id):
    return ProcessEntry(id=entry_id, pid=pid, type=ProcessType.AGENT_SESSION, instance_id=instance_id)


# =============================================================================
# Immediate check
# =============================================================================

@pytest.mark.asyncio
async def test_dead_registry_entry_is_removed_and_check_stays_healthy(checker, fake_ops, instance_id):
    register_process(_session("c1", 1234, instance_id))

    result = await checker.run_immediate_check()

    assert result.registry_cleanup.removed == 1
    assert result.registry_cleanup.orphans == 0
    assert result.healthy is True
    assert result.issues == ["Cleaned 1 dead process entries"]
    assert get_current_processes() == []


@pytest.mark.asyncio
async def test_live_entry_missing_from_scan_is_kept(checker, fake_ops, instance_id):
    # Alive but not visible to the PPID scan (e.g. a scan that timed out)
    fake_ops.alive.add(4321)
    register_process(_session("c1", 4321, instance_id))

    result = await checker.run_immediate_check()

    assert result.registry_cleanup.removed == 0
    assert [e.id for e in get_current_processes()] == ["c1"]


@pytest.mark.asyncio
async def test_registered_children_match_expected_counts(checker, fake_ops, instance_id):
    fake_ops.add_child(500, "claude")
    fake_ops.add_child(501, "cloudflared")
    register_process(_session("c1", 500, instance_id))
    register_process(ProcessEntry(id="t1", pid=501, type=ProcessType.TUNNEL, instance_id=instance_id))

    result = await checker.run_immediate_check()

    assert result.healthy is True
    assert result.issues == []
    session = result.processes["agent-session"]
    assert (session.expected, session.actual, session.pids, session.healthy) == (1, 1, [500], True)
    assert result.processes["tunnel"].healthy is True


@pytest.mark.asyncio
async def test_unregistered_child_is_reported_as_orphan(checker, fake_ops, instance_id):
    fake_ops.add_child(600, "claude")
    fake_ops.add_child(601, "bash")

    result = await checker.run_immediate_check()

    assert result.registry_cleanup.orphans == 1
    assert result.healthy is False
    assert "1 orphan processes detected" in result.issues
    event = get_recent_events()[0]
    assert event.type == HealthEventType.ORPHAN_DETECTED
    assert event.category == EventCategory.WARNING
    assert event.data == {"orphans": 1}


@pytest.mark.asyncio
async def test_concurrent_checks_share_one_scan(checker, fake_ops):
    fake_ops.scan_delay = 0.05

    first, second = await asyncio.gather(checker.run_immediate_check(), checker.run_immediate_check())

    assert first is second
    assert fake_ops.child_scans == 1
    assert checker.scan_count == 1


@pytest.mark.asyncio
async def test_check_within_cooldown_returns_cached_result(checker, fake_ops):
    first = await checker.run_immediate_check()
    second = await checker.run_immediate_check()

    assert first is second
    assert checker.scan_count == 1


@pytest.mark.asyncio
async def test_check_after_cooldown_runs_again(health_settings, fake_ops, instance_id, low_memory):
    health_settings.immediate_check_cooldown = 0.0
    checker = RuntimeChecker()

    first = await checker.run_immediate_check()
    second = await checker.run_immediate_check()

    assert first is not second
    assert checker.scan_count == 2


@pytest.mark.asyncio
async def test_failed_scan_is_reported_not_raised(checker, fake_ops, monkeypatch):
    async def broken(parent_pid):
        raise OSError("ps exploded")

    monkeypatch.setattr(fake_ops, "find_child_processes", broken)

    result = await checker.run_immediate_check()

    assert result.healthy is False
    assert "PPID scan failed" in result.issues


@pytest.mark.asyncio
async def test_timed_out_scan_is_reported_as_failed(checker, fake_ops, instance_id, monkeypatch):
    async def timed_out(parent_pid):
        raise ProcessScanError("ps (ppid scan) timed out or failed to start")

    fake_ops.alive.add(4321)
    register_process(_session("c1", 4321, instance_id))
    monkeypatch.setattr(fake_ops, "find_child_processes", timed_out)

    result = await checker.run_immediate_check()

    assert result.healthy is False
    assert "PPID scan failed" in result.issues
    assert result.registry_cleanup.removed == 0
    assert [e.id for e in get_current_processes()] == ["c1"]


@pytest.mark.asyncio
async def test_unresponsive_service_makes_check_unhealthy(checker):
    down = ProbeResult(
        name="protocol-router", healthy=False, severity=Severity.CRITICAL,
        message="down", data={"port": 9123, "responseTime": 1.0, "error": "Connection refused"},
    )
    checker.set_service_info_providers(router=lambda: ServiceInfo(running=True, port=9123))

    with patch.object(runtime_module, "check_service", AsyncMock(return_value=down)) as probe:
        result = await checker.run_immediate_check()

    probe.assert_awaited_once_with("protocol-router", 9123, timeout=5.0)

    assert result.healthy is False
    router = result.services["protocolRouter"]
    assert (router.port, router.responsive, router.error) == (9123, False, "Connection refused")
    assert result.services["httpServer"].port is None
    event = get_recent_events()[0]
    assert event.type == HealthEventType.SERVICE_UNRESPONSIVE
    assert event.category == EventCategory.CRITICAL


@pytest.mark.asyncio
async def test_stopped_service_is_not_probed(checker, monkeypatch):
    async def must_not_run(*args, **kwargs):
        raise AssertionError("probe should not run")

    monkeypatch.setattr(runtime_module, "check_service", must_not_run)
    checker.set_service_info_providers(
        router=lambda: ServiceInfo(running=False, port=9123),
        http_server=lambda: None,
    )

    result = await checker.run_immediate_check()

    assert result.healthy is True
    assert result.services["protocolRouter"].responsive is False


@pytest.mark.asyncio
async def test_ppid_scan_and_cleanup_summary(checker, fake_ops, instance_id):
    fake_ops.add_child(700, "claude")
    register_process(_session("gone", 999, instance_id))

    summary = await checker.run_ppid_scan_and_cleanup()

    assert summary == {"removed": 1, "orphans": 1, "scanFailed": False}
    assert checker.scan_count == 0


# =============================================================================
# Passive polling
# =============================================================================

def test_passive_check_reports_only_transitions(checker):
    seen = []
    checker._callback = lambda status, message: seen.append((status, message))

    assert checker.perform_fallback_check() == HealthStatus.HEALTHY
    assert seen == []

    emit_health_event(HealthEventType.AGENT_ERROR, EventCategory.CRITICAL, "agent", "boom")
    assert checker.perform_fallback_check() == HealthStatus.UNHEALTHY
    assert checker.perform_fallback_check() == HealthStatus.UNHEALTHY

    assert len(seen) == 1
    assert seen[0][0] == HealthStatus.UNHEALTHY
    assert "critical events in last minute" in seen[0][1]


def test_passive_check_flags_orphans_as_degraded(checker):
    register_process(ProcessEntry(id="old", pid=1, type=ProcessType.TUNNEL, instance_id="other"))
    assert checker.perform_fallback_check() == HealthStatus.DEGRADED


def test_passive_check_flags_high_memory(checker, health_settings, monkeypatch):
    monkeypatch.setattr(runtime_module, "process_memory_mb", lambda: health_settings.memory_critical_mb + 1)
    assert checker.perform_fallback_check() == HealthStatus.UNHEALTHY


def test_passive_check_never_touches_the_platform(checker, fake_ops):
    checker.perform_fallback_check()
    assert fake_ops.child_scans == 0
    assert fake_ops.killed == []


@pytest.mark.asyncio
async def test_polling_start_and_stop(checker):
    checker.start_fallback_polling(lambda status, message: None)
    assert checker.is_polling_active() is True
    assert checker.get_runtime_status()["isPollingActive"] is True

    checker.stop_fallback_polling()
    await asyncio.sleep(0)
    assert checker.is_polling_active() is False


@pytest.mark.asyncio
async def test_poll_loop_invokes_callback_on_transition(health_settings, fake_ops, instance_id, low_memory):
    health_settings.fallback_poll_interval = 0.01
    checker = RuntimeChecker()
    transitions = []

    emit_health_event(HealthEventType.AGENT_ERROR, EventCategory.CRITICAL, "agent", "boom")
    checker.start_fallback_polling(lambda status, message: transitions.append(status))
    try:
        for _ in range(50):
            if transitions:
                break
            await asyncio.sleep(0.01)
    finally:
        checker.stop_fallback_polling()

    assert transitions == [HealthStatus.UNHEALTHY]
