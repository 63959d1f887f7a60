"""
Health Event Bus
================

Every component reports observations here; the orchestrator subscribes and
turns them into status transitions and recovery decisions.

Guarantees:
- Handlers run synchronously, in subscription order, for events in strict
  emission order. An event emitted from inside a handler is queued and
  dispatched after the current one finishes.
- A failing handler is logged and does not stop the handlers after it.
- The bus keeps its own bounded, newest-first history and a consecutive
  critical-event counter used by the passive poller.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, List, Mapping, Optional

from halo_health.core.secure_logging import sanitize_for_log
from halo_health.core.types import (
    RESETTING_EVENT_TYPES,
    EventCategory,
    HealthEvent,
    HealthEventType,
    RecoveryResult,
    now,
)

logger = logging.getLogger(__name__)

MAX_RECENT_EVENTS = 50

HealthEventHandler = Callable[[HealthEvent], None]


class HealthEventBus:
    """Ordered, synchronous publish/subscribe for HealthEvents."""

    def __init__(self, max_recent: int = MAX_RECENT_EVENTS):
        self._handlers: List[HealthEventHandler] = []
        self._recent: Deque[HealthEvent] = deque(maxlen=max_recent)
        self._pending: Deque[HealthEvent] = deque()
        self._dispatching = False
        self._error_count = 0

    def subscribe(self, handler: HealthEventHandler) -> Callable[[], None]:
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def emit(self, event: HealthEvent) -> None:
        if event.category == EventCategory.CRITICAL:
            self._error_count += 1
        elif event.category == EventCategory.INFO and event.type in RESETTING_EVENT_TYPES:
            self._error_count = 0
        self._recent.appendleft(event)

        level = logging.WARNING if event.category != EventCategory.INFO else logging.DEBUG
        logger.log(
            level,
            f"[Health][Events] {event.category.value} {event.type.value} from "
            f"{sanitize_for_log(event.source)}: {sanitize_for_log(event.message)}",
        )

        self._pending.append(event)
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._pending:
                self._dispatch(self._pending.popleft())
        finally:
            self._dispatching = False

    def _dispatch(self, event: HealthEvent) -> None:
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error(f"[Health][Events] Handler {getattr(handler, '__name__', handler)} failed: {e}")

    def recent_events(self) -> List[HealthEvent]:
        return list(self._recent)

    @property
    def error_count(self) -> int:
        return self._error_count

    def reset_error_count(self) -> None:
        self._error_count = 0

    def clear(self) -> None:
        self._handlers.clear()
        self._recent.clear()
        self._pending.clear()
        self._error_count = 0


# =============================================================================
# Global Instance
# =============================================================================

_bus: Optional[HealthEventBus] = None


def get_event_bus() -> HealthEventBus:
    global _bus
    if _bus is None:
        _bus = HealthEventBus()
    return _bus


def reset_event_bus() -> None:
    global _bus
    _bus = None


def emit_health_event(
    event_type: HealthEventType,
    category: EventCategory,
    source: str,
    message: str,
    data: Optional[Mapping[str, Any]] = None,
) -> HealthEvent:
    event = HealthEvent(
        type=HealthEventType(event_type),
        category=EventCategory(category),
        timestamp=now(),
        source=source,
        message=message,
        data=dict(data) if data is not None else None,
    )
    get_event_bus().emit(event)
    return event


def on_health_event(handler: HealthEventHandler) -> Callable[[], None]:
    """Subscribe to all health events. Returns an unsubscribe callable."""
    return get_event_bus().subscribe(handler)


def get_recent_events() -> List[HealthEvent]:
    return get_event_bus().recent_events()


def get_total_error_count() -> int:
    return get_event_bus().error_count


# =============================================================================
# Typed emitters
# =============================================================================

def emit_agent_error(conversation_id: str, error: str) -> HealthEvent:
    return emit_health_event(
        HealthEventType.AGENT_ERROR,
        EventCategory.CRITICAL,
        "agent",
        f"Agent error: {error}",
        {"conversationId": conversation_id, "error": error},
    )


def emit_process_exit(process_id: str, exit_code: Optional[int]) -> HealthEvent:
    # A zero exit is a normal end of session
    category = EventCategory.INFO if exit_code == 0 else EventCategory.CRITICAL
    return emit_health_event(
        HealthEventType.PROCESS_EXIT,
        category,
        process_id,
        f"Process exited with code {exit_code}",
        {"exitCode": exit_code},
    )


def emit_service_unresponsive(service: str, message: str, expected: bool = True) -> HealthEvent:
    category = EventCategory.CRITICAL if expected else EventCategory.WARNING
    return emit_health_event(
        HealthEventType.SERVICE_UNRESPONSIVE,
        category,
        service,
        message,
        {"expected": expected},
    )


def emit_recovery_result(result: RecoveryResult) -> HealthEvent:
    if result.success:
        return emit_health_event(
            HealthEventType.RECOVERY_SUCCESS,
            EventCategory.INFO,
            "recovery",
            f"Recovery {result.strategy_id.value} succeeded: {result.message}",
            result.to_dict(),
        )
    return emit_health_event(
        HealthEventType.RECOVERY_FAILED,
        EventCategory.WARNING,
        "recovery",
        f"Recovery {result.strategy_id.value} failed: {result.message}",
        result.to_dict(),
    )
