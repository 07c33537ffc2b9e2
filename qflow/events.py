"""
Immutable notifications published by the engines.

Every state transition in the core produces one Notification. Delivery goes
through an EventBus owned by the engine instance (or shared between the
engines of one Orchestrator); there is no process-wide emitter.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from rich.console import Console

from .util import utc_now

# Constraint validation
CONSTRAINT_ADDED = "constraint.added"
CONSTRAINT_REMOVED = "constraint.removed"
ACTION_ACCEPTED = "action.accepted"
ACTION_REJECTED = "action.rejected"
ACTION_ROLLED_BACK = "action.rolled_back"
VIOLATION_RECORDED = "violation.recorded"

# Observer protection
OBSERVER_REGISTERED = "observer.registered"
OBSERVER_DEREGISTERED = "observer.deregistered"
RIGHTS_UPDATED = "rights.updated"
RIGHTS_VIOLATION = "rights.violation"
PROTECTION_LAYER_ADDED = "protection_layer.added"
NARRATIVE_ENTRY_ADDED = "narrative.entry_added"

# Reversible execution
UNIT_COMPLETED = "unit.completed"
UNIT_ERRORED = "unit.errored"
ROLLBACK_STARTED = "rollback.started"
ROLLBACK_COMPLETED = "rollback.completed"
ROLLBACK_FAILED = "rollback.failed"
SNAPSHOT_CREATED = "snapshot.created"
SNAPSHOT_UPDATED = "snapshot.updated"
CLEANUP_COMPLETED = "cleanup.completed"

EVENT_TYPES = frozenset({
    CONSTRAINT_ADDED,
    CONSTRAINT_REMOVED,
    ACTION_ACCEPTED,
    ACTION_REJECTED,
    ACTION_ROLLED_BACK,
    VIOLATION_RECORDED,
    OBSERVER_REGISTERED,
    OBSERVER_DEREGISTERED,
    RIGHTS_UPDATED,
    RIGHTS_VIOLATION,
    PROTECTION_LAYER_ADDED,
    NARRATIVE_ENTRY_ADDED,
    UNIT_COMPLETED,
    UNIT_ERRORED,
    ROLLBACK_STARTED,
    ROLLBACK_COMPLETED,
    ROLLBACK_FAILED,
    SNAPSHOT_CREATED,
    SNAPSHOT_UPDATED,
    CLEANUP_COMPLETED,
})


@dataclass(frozen=True)
class Notification:
    """
    Immutable record of one state transition.

    `payload` carries the entity the transition concerns (a Constraint,
    Violation, RollbackRecord, ...) under descriptive keys.
    """

    event_type: str  # One of EVENT_TYPES
    subject_id: str  # Id of the entity the event concerns
    timestamp: datetime
    source: str  # "constraints", "protection", "reversibility"
    payload: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {self.event_type}")

    def to_dict(self) -> dict[str, Any]:
        """Shallow dict view; payload values are passed through untouched."""
        result: dict[str, Any] = {
            "event_type": self.event_type,
            "subject_id": self.subject_id,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }
        if self.payload:
            result["payload"] = dict(self.payload)
        return result


def create_event(
    event_type: str,
    subject_id: str,
    source: str,
    *,
    payload: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> Notification:
    """
    Factory function for creating notifications.

    Ensures consistent timestamp handling and validation.
    """
    return Notification(
        event_type=event_type,
        subject_id=subject_id,
        timestamp=timestamp or utc_now(),
        source=source,
        payload=payload or {},
    )


Listener = Callable[[Notification], None]


class EventBus:
    """
    Per-instance listener registry.

    Listeners subscribe by event type (or to everything). A listener that
    raises is reported on the console; delivery to the remaining listeners
    continues.
    """

    def __init__(self, *, console: Console | None = None, history_size: int = 1000):
        self.console = console or Console(stderr=True)
        self._listeners: dict[str, list[Listener]] = {}
        self._wildcard: list[Listener] = []
        self._history: deque[Notification] = deque(maxlen=max(0, history_size))

    def subscribe(self, event_type: str, listener: Listener) -> None:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Invalid event_type: {event_type}")
        self._listeners.setdefault(event_type, []).append(listener)

    def subscribe_all(self, listener: Listener) -> None:
        self._wildcard.append(listener)

    def unsubscribe(self, listener: Listener, event_type: str | None = None) -> bool:
        """Remove a listener; returns whether anything was removed."""
        removed = False
        buckets = [self._listeners.get(event_type, [])] if event_type else list(self._listeners.values())
        if event_type is None:
            buckets.append(self._wildcard)
        for bucket in buckets:
            while listener in bucket:
                bucket.remove(listener)
                removed = True
        return removed

    def publish(self, event: Notification) -> None:
        self._history.append(event)
        for listener in [*self._listeners.get(event.event_type, []), *self._wildcard]:
            try:
                listener(event)
            except Exception as e:
                self.console.print(
                    f"[red]Listener failed for {event.event_type}: {type(e).__name__}: {e}[/red]"
                )

    def emit(
        self,
        event_type: str,
        subject_id: str,
        source: str,
        **payload: Any,
    ) -> Notification:
        """Create and publish in one step."""
        event = create_event(event_type, subject_id, source, payload=payload)
        self.publish(event)
        return event

    @property
    def history(self) -> list[Notification]:
        return list(self._history)

    def events_of(self, event_type: str) -> list[Notification]:
        return [e for e in self._history if e.event_type == event_type]

    def clear_history(self) -> None:
        self._history.clear()
