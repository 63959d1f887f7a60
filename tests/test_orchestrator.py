import asyncio
import json
import time

import pytest

import halo_health
from halo_health.core.orchestrator import HealthOrchestrator
from halo_health.core.types import (
    EventCategory,
    HealthEventType,
    HealthStatus,
    ProcessEntry,
    ProcessType,
    RecoveryResult,
    RecoveryStrategyId,
)
from halo_health.health_checker.event_bus import emit_health_event, get_recent_events
from halo_health.process_guardian.registry import register_process


def _critical(source="agent", message="boom"):
    emit_health_event(HealthEventType.AGENT_ERROR, EventCategory.CRITICAL, source, message)


def _warning(source="disk", message="low disk"):
    emit_health_event(HealthEventType.PROBE_FAILED, EventCategory.WARNING, source, message)


class _RecordingRecovery:
    """Stands in for execute_recovery(_with_prompt) and records strategies."""

    def __init__(self, success=False, delay=0.0):
        self.strategies = []
        self.success = success
        self.delay = delay

    async def __call__(self, strategy_id, *args):
        self.strategies.append(RecoveryStrategyId(strategy_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        return RecoveryResult(strategy_id=RecoveryStrategyId(strategy_id), success=self.success, message="done")


@pytest.fixture
def orchestrator(health_settings, fake_ops):
    orch = HealthOrchestrator()
    orch.init_instance_id()
    return orch


@pytest.fixture
def recording(orchestrator, monkeypatch):
    recorder = _RecordingRecovery()
    monkeypatch.setattr(orchestrator.recovery, "execute_recovery", recorder)
    monkeypatch.setattr(orchestrator.recovery, "execute_recovery_with_prompt", recorder)
    return recorder


# =============================================================================
# Lifecycle
# =============================================================================

@pytest.mark.asyncio
async def test_initialize_starts_polling_and_shutdown_marks_clean_exit(orchestrator, health_settings):
    await orchestrator.initialize()
    assert orchestrator.is_polling_active() is True
    assert orchestrator.get_health_state().is_polling_active is True

    orchestrator.shutdown()

    assert orchestrator.is_polling_active() is False
    data = json.loads(health_settings.instance_file.read_text(encoding="utf-8"))
    assert data["cleanExit"] is True
    assert data["instanceId"] == orchestrator.get_health_state().instance_id


@pytest.mark.asyncio
async def test_events_after_shutdown_are_ignored(orchestrator):
    await orchestrator.initialize()
    orchestrator.shutdown()

    _critical()

    assert orchestrator.get_health_state().status == HealthStatus.HEALTHY


@pytest.mark.asyncio
async def test_startup_checks_emit_steady_state_event(orchestrator, health_settings):
    health_settings.run_startup_checks = True
    health_settings.disk_warning_mb = 0
    health_settings.disk_critical_mb = 0

    await orchestrator.initialize()
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert orchestrator.last_startup_check.status == HealthStatus.HEALTHY
    assert get_recent_events()[0].type == HealthEventType.STARTUP_CHECK
    assert orchestrator.get_health_state().status == HealthStatus.HEALTHY


@pytest.mark.asyncio
async def test_corrupt_config_at_startup_is_unhealthy_without_recovery(orchestrator, health_settings, recording):
    health_settings.run_startup_checks = True
    health_settings.disk_warning_mb = 0
    health_settings.disk_critical_mb = 0
    health_settings.config_path.write_text("{broken", encoding="utf-8")

    await orchestrator.initialize()
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    state = orchestrator.get_health_state()
    assert state.status == HealthStatus.UNHEALTHY
    assert state.consecutive_failures == 1
    assert recording.strategies == []
    assert any(e.type == HealthEventType.CONFIG_INVALID for e in state.recent_events)


# =============================================================================
# State machine
# =============================================================================

@pytest.mark.asyncio
async def test_critical_event_recovers_through_s1(orchestrator, fake_ops):
    changes = []
    orchestrator.on_status_change(changes.append)
    await orchestrator.initialize()
    register_process(ProcessEntry(id="c1", pid=1234, type=ProcessType.AGENT_SESSION,
                                  instance_id=orchestrator.get_health_state().instance_id))

    _critical()
    assert orchestrator.get_health_state().status == HealthStatus.UNHEALTHY
    assert orchestrator.get_health_state().consecutive_failures == 1

    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    state = orchestrator.get_health_state()
    assert state.status == HealthStatus.HEALTHY
    assert state.consecutive_failures == 0
    assert state.recovery_attempts == 1
    assert [(c["previousStatus"], c["status"]) for c in changes] == [
        ("healthy", "unhealthy"),
        ("unhealthy", "healthy"),
    ]
    assert changes[0]["reason"] == "boom"


@pytest.mark.asyncio
async def test_repeated_failures_escalate(orchestrator, recording):
    await orchestrator.initialize()

    for _ in range(5):
        _critical()
        await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert recording.strategies == [
        RecoveryStrategyId.S1,
        RecoveryStrategyId.S2,
        RecoveryStrategyId.S3,
        RecoveryStrategyId.S4,
        RecoveryStrategyId.S4,
    ]
    assert orchestrator.get_health_state().consecutive_failures == 5
    failed = [e for e in get_recent_events() if e.type == HealthEventType.RECOVERY_FAILED]
    assert len(failed) == 5


@pytest.mark.asyncio
async def test_config_failures_never_trigger_recovery(orchestrator, recording):
    await orchestrator.initialize()

    _critical(source="config")
    _critical(source="config")
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert recording.strategies == []
    assert orchestrator.get_health_state().status == HealthStatus.UNHEALTHY


@pytest.mark.asyncio
async def test_only_one_recovery_runs_at_a_time(orchestrator, recording):
    recording.delay = 0.05
    await orchestrator.initialize()

    _critical()
    _critical()
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert recording.strategies == [RecoveryStrategyId.S1]


@pytest.mark.asyncio
async def test_cooldown_suppresses_automatic_recovery(orchestrator, recording, health_settings):
    health_settings.recovery_cooldown = 60.0
    orchestrator.recovery._last_recovery_at = time.monotonic()
    await orchestrator.initialize()

    _critical()
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert recording.strategies == []


@pytest.mark.asyncio
async def test_warning_degrades_only_a_healthy_system(orchestrator, recording):
    changes = []
    orchestrator.on_status_change(changes.append)
    await orchestrator.initialize()

    _warning()
    assert orchestrator.get_health_state().status == HealthStatus.DEGRADED

    _critical()
    _warning()
    await orchestrator.wait_for_background_tasks()
    orchestrator.shutdown()

    assert orchestrator.get_health_state().status == HealthStatus.UNHEALTHY
    assert [c["status"] for c in changes] == ["degraded", "unhealthy"]


@pytest.mark.asyncio
async def test_clean_process_exit_changes_nothing(orchestrator):
    await orchestrator.initialize()

    orchestrator.on_process_exit("c1", 0)
    orchestrator.shutdown()

    state = orchestrator.get_health_state()
    assert (state.status, state.consecutive_failures) == (HealthStatus.HEALTHY, 0)


@pytest.mark.asyncio
async def test_poller_status_reaches_listeners(orchestrator):
    changes = []
    orchestrator.on_status_change(changes.append)
    await orchestrator.initialize()

    orchestrator.handle_status_change(HealthStatus.DEGRADED, "1 orphan processes in registry")
    orchestrator.handle_status_change(HealthStatus.DEGRADED, "1 orphan processes in registry")
    orchestrator.shutdown()

    assert len(changes) == 1
    assert changes[0]["reason"] == "1 orphan processes in registry"


@pytest.mark.asyncio
async def test_failing_listener_does_not_break_transitions(orchestrator):
    def broken(payload):
        raise RuntimeError("ui gone")

    seen = []
    orchestrator.on_status_change(broken)
    unsubscribe = orchestrator.on_status_change(seen.append)
    await orchestrator.initialize()

    orchestrator.handle_status_change(HealthStatus.DEGRADED, "x")
    unsubscribe()
    orchestrator.handle_status_change(HealthStatus.HEALTHY, "y")
    orchestrator.shutdown()

    assert [c["status"] for c in seen] == ["degraded"]
    assert orchestrator.self_failures == 0


@pytest.mark.asyncio
async def test_health_state_is_a_copy(orchestrator):
    await orchestrator.initialize()
    _warning()

    snapshot = orchestrator.get_health_state()
    snapshot.recent_events.clear()
    snapshot.status = HealthStatus.UNHEALTHY
    orchestrator.shutdown()

    state = orchestrator.get_health_state()
    assert state.status == HealthStatus.DEGRADED
    assert len(state.recent_events) == 1


# =============================================================================
# Manual recovery
# =============================================================================

@pytest.mark.asyncio
async def test_manual_disruptive_recovery_without_consent_is_silent(orchestrator, fake_ops):
    await orchestrator.initialize()
    fake_ops.add_managed(80, orchestrator.get_health_state().instance_id)

    result = await orchestrator.trigger_recovery(RecoveryStrategyId.S3)
    orchestrator.shutdown()

    assert result.success is False
    assert fake_ops.killed == []
    assert not any(e.source == "recovery" for e in get_recent_events())


@pytest.mark.asyncio
async def test_manual_recovery_success_resets_failures(orchestrator):
    await orchestrator.initialize()
    _critical(source="config")

    result = await orchestrator.trigger_recovery(RecoveryStrategyId.S1)
    orchestrator.shutdown()

    assert result.success is True
    state = orchestrator.get_health_state()
    assert (state.status, state.consecutive_failures) == (HealthStatus.HEALTHY, 0)


@pytest.mark.asyncio
async def test_prompted_recovery_runs_after_consent(orchestrator, fake_ops):
    asked = []

    async def accept(strategy, message):
        asked.append((strategy.id, message))
        return True

    await orchestrator.initialize()
    orchestrator.set_consent_prompt(accept)
    fake_ops.add_managed(82, orchestrator.get_health_state().instance_id)

    result = await orchestrator.trigger_recovery_with_prompt(RecoveryStrategyId.S3, "Agent keeps crashing")
    orchestrator.shutdown()

    assert result.success is True
    assert asked == [(RecoveryStrategyId.S3, "Agent keeps crashing")]
    assert fake_ops.killed == [(82, "SIGTERM")]
    assert get_recent_events()[0].type == HealthEventType.RECOVERY_SUCCESS
    assert orchestrator.get_health_state().recovery_attempts == 1


@pytest.mark.asyncio
async def test_declined_prompt_does_nothing_and_is_not_asked_again(orchestrator, fake_ops):
    asked = []

    async def decline(strategy, message):
        asked.append(strategy.id)
        return False

    await orchestrator.initialize()
    orchestrator.set_consent_prompt(decline)
    fake_ops.add_managed(83, orchestrator.get_health_state().instance_id)

    first = await orchestrator.trigger_recovery_with_prompt(RecoveryStrategyId.S4)
    second = await orchestrator.trigger_recovery_with_prompt(RecoveryStrategyId.S4)
    orchestrator.shutdown()

    assert (first.success, first.message) == (False, "User declined recovery")
    assert (second.success, second.message) == (False, "Recovery prompt suppressed")
    assert asked == [RecoveryStrategyId.S4]
    assert fake_ops.killed == []
    failed = [e for e in get_recent_events() if e.type == HealthEventType.RECOVERY_FAILED]
    assert failed[-1].category == EventCategory.WARNING
    assert orchestrator.get_health_state().recovery_attempts == 2


# =============================================================================
# Self-protection
# =============================================================================

@pytest.mark.asyncio
async def test_repeated_internal_failures_disable_the_system(orchestrator, monkeypatch, health_settings):
    await orchestrator.initialize()

    def broken(*args):
        raise RuntimeError("strategy table exploded")

    monkeypatch.setattr(orchestrator.recovery, "select_recovery_strategy", broken)

    for _ in range(health_settings.self_failure_threshold - 1):
        _critical()
    assert orchestrator.get_health_state().is_enabled is True

    _critical()
    state = orchestrator.get_health_state()
    assert state.is_enabled is False
    assert orchestrator.is_polling_active() is False
    assert orchestrator.get_health_status()["isEnabled"] is False

    # Disabled is terminal
    _critical()
    orchestrator.handle_status_change(HealthStatus.UNHEALTHY, "ignored")
    await orchestrator.initialize()
    orchestrator.shutdown()
    assert orchestrator.get_health_state().is_enabled is False
    assert orchestrator.get_health_state().status == HealthStatus.HEALTHY


# =============================================================================
# Module-level API
# =============================================================================

@pytest.mark.asyncio
async def test_package_facade_lifecycle(health_settings, fake_ops):
    instance_id = halo_health.init_instance_id()
    await halo_health.initialize_health_system()

    halo_health.on_agent_error("conv-1", "stream closed")
    await halo_health.get_orchestrator().wait_for_background_tasks()

    status = halo_health.get_health_status()
    halo_health.shutdown_health_system()

    assert status["instanceId"] == instance_id
    assert status["isEnabled"] is True
    assert status["recoveryAttempts"] == 1
    assert halo_health.was_last_exit_clean() is True
