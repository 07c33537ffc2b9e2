from __future__ import annotations

import pytest

from qflow.events import (
    ACTION_ACCEPTED,
    EVENT_TYPES,
    OBSERVER_REGISTERED,
    VIOLATION_RECORDED,
    EventBus,
    Notification,
    create_event,
)


class TestNotification:
    def test_create_event_sets_timestamp(self) -> None:
        event = create_event(ACTION_ACCEPTED, "A1", "constraints", payload={"x": 1})
        assert event.timestamp.tzinfo is not None
        assert event.payload == {"x": 1}

    def test_unknown_event_type_rejected(self) -> None:
        with pytest.raises(ValueError, match="Invalid event_type"):
            create_event("action.exploded", "A1", "constraints")

    def test_to_dict_omits_empty_payload(self) -> None:
        event = create_event(ACTION_ACCEPTED, "A1", "constraints")
        data = event.to_dict()
        assert data["event_type"] == ACTION_ACCEPTED
        assert data["subject_id"] == "A1"
        assert "payload" not in data

    def test_event_types_are_dotted(self) -> None:
        assert all("." in t for t in EVENT_TYPES)


class TestEventBus:
    def test_subscribe_by_type(self, events: EventBus) -> None:
        seen: list[Notification] = []
        events.subscribe(ACTION_ACCEPTED, seen.append)

        events.emit(ACTION_ACCEPTED, "A1", "constraints")
        events.emit(VIOLATION_RECORDED, "V1", "constraints")

        assert [e.subject_id for e in seen] == ["A1"]

    def test_subscribe_all(self, events: EventBus) -> None:
        seen: list[str] = []
        events.subscribe_all(lambda e: seen.append(e.event_type))

        events.emit(ACTION_ACCEPTED, "A1", "constraints")
        events.emit(OBSERVER_REGISTERED, "O1", "protection")

        assert seen == [ACTION_ACCEPTED, OBSERVER_REGISTERED]

    def test_subscribe_unknown_type(self, events: EventBus) -> None:
        with pytest.raises(ValueError):
            events.subscribe("nope", lambda e: None)

    def test_unsubscribe(self, events: EventBus) -> None:
        seen: list[Notification] = []
        events.subscribe(ACTION_ACCEPTED, seen.append)

        assert events.unsubscribe(seen.append) is True
        assert events.unsubscribe(seen.append) is False

        events.emit(ACTION_ACCEPTED, "A1", "constraints")
        assert seen == []

    def test_failing_listener_does_not_stop_delivery(self, events: EventBus, console) -> None:
        seen: list[str] = []

        def broken(event: Notification) -> None:
            raise RuntimeError("boom")

        events.subscribe(ACTION_ACCEPTED, broken)
        events.subscribe(ACTION_ACCEPTED, lambda e: seen.append(e.subject_id))

        events.emit(ACTION_ACCEPTED, "A1", "constraints")

        assert seen == ["A1"]
        assert "Listener failed for action.accepted" in console.file.getvalue()

    def test_history_is_bounded(self, console) -> None:
        bus = EventBus(console=console, history_size=2)
        for i in range(3):
            bus.emit(ACTION_ACCEPTED, f"A{i}", "constraints")

        assert [e.subject_id for e in bus.history] == ["A1", "A2"]
        assert len(bus.events_of(ACTION_ACCEPTED)) == 2

        bus.clear_history()
        assert bus.history == []
