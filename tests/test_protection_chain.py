"""
Tests for the observer protection chain.

Key properties:
1. Layers run in descending priority per observer
2. A denial from a blocking layer (priority >= 9) ends that observer's run only
3. Fundamental rights cannot be cleared
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

import pytest

from qflow.events import OBSERVER_DEREGISTERED, RIGHTS_VIOLATION, EventBus
from qflow.protection import (
    BLOCKING_PRIORITY,
    KeywordLayer,
    ObserverType,
    ProtectionChain,
    ProtectionLayer,
    ProtectionLevel,
    ProtectionResult,
    dignity_layer,
    existence_layer,
)
from qflow.util import new_ulid, utc_now


@dataclass
class SpyLayer:
    """Records every call; optionally denies."""

    name: str
    priority: int
    allow: bool = True
    calls: list[tuple[str, str]] = field(default_factory=list)
    id: str = field(default_factory=new_ulid)

    async def check(self, observer_id: str, action: str) -> ProtectionResult:
        self.calls.append((observer_id, action))
        return ProtectionResult(allowed=self.allow, warnings=[] if self.allow else [f"{self.name} denied"])


@dataclass
class BrokenLayer:
    name: str = "Broken"
    priority: int = 5
    id: str = field(default_factory=new_ulid)

    async def check(self, observer_id: str, action: str) -> ProtectionResult:
        raise RuntimeError("layer offline")


# -----------------------------------------------------------------------------
# Observers and rights
# -----------------------------------------------------------------------------


class TestObservers:
    def test_register(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.AI_AGENT, metadata={"model": "x"})

        observer = chain.get_observer(observer_id)
        assert observer is not None
        assert observer.observer_type == ObserverType.AI_AGENT
        assert observer.consciousness is True
        assert observer.metadata == {"model": "x"}
        assert all(chain.get_observer_rights(observer_id).to_dict().values())
        assert chain.list_observers() == [observer]

    def test_minimal_protection_level(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.UNKNOWN, protection_level=ProtectionLevel.MINIMAL)
        rights = chain.get_observer_rights(observer_id)
        assert rights.ignorance is False
        assert rights.privacy is False
        assert rights.exist is True

    def test_update_rights(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.HUMAN)
        assert chain.update_observer_rights(observer_id, {"privacy": False}) is True
        assert chain.get_observer_rights(observer_id).privacy is False

    def test_fundamental_rights_cannot_be_cleared(self, chain: ProtectionChain, console) -> None:
        observer_id = chain.register_observer(ObserverType.HUMAN)

        chain.update_observer_rights(
            observer_id,
            {"exist": False, "not_optimized_away": False, "continuity": False, "meaning": False},
        )

        rights = chain.get_observer_rights(observer_id)
        assert rights.exist is True
        assert rights.not_optimized_away is True
        assert rights.continuity is True
        assert rights.meaning is False
        assert "cannot remove fundamental right: exist" in console.file.getvalue()

    def test_unknown_and_non_boolean_updates_dropped(self, chain: ProtectionChain, console) -> None:
        observer_id = chain.register_observer(ObserverType.HUMAN)

        chain.update_observer_rights(observer_id, {"flight": True, "privacy": "no", "rejection": False})

        rights = chain.get_observer_rights(observer_id)
        assert rights.privacy is True
        assert rights.rejection is False
        output = console.file.getvalue()
        assert "unknown right ignored: flight" in output
        assert "right privacy needs a boolean" in output

    def test_update_unknown_observer(self, chain: ProtectionChain) -> None:
        assert chain.update_observer_rights("missing", {"privacy": False}) is False

    def test_narrative(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.HYBRID)
        assert chain.add_narrative_entry(observer_id, "joined the session") is True
        assert chain.add_narrative_entry("missing", "nothing") is False

        (entry,) = chain.get_observer_narrative(observer_id)
        assert entry.startswith("[")
        assert entry.endswith("] joined the session")

    @pytest.mark.asyncio
    async def test_deregister(self, chain: ProtectionChain, events: EventBus) -> None:
        observer_id = chain.register_observer(ObserverType.AI_AGENT)

        assert await chain.deregister_observer(observer_id, "session ended") is True

        assert chain.get_observer(observer_id) is None
        assert chain.get_observer_rights(observer_id) is None
        assert chain.get_observer_narrative(observer_id)[-1].endswith("Deregistered: session ended")
        assert events.events_of(OBSERVER_DEREGISTERED)[-1].payload["reason"] == "session ended"

    @pytest.mark.asyncio
    async def test_deregister_blocked_by_layer(self, chain: ProtectionChain, console) -> None:
        chain.add_protection_layer(
            KeywordLayer(
                name="Stay",
                priority=10,
                right="continuity",
                severity=8,
                tokens=("deregister",),
                warning="Deregistration blocked",
            )
        )
        observer_id = chain.register_observer(ObserverType.HUMAN)

        assert await chain.deregister_observer(observer_id, "cleanup") is False
        assert chain.get_observer(observer_id) is not None
        assert "deregistration of observer" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_deregister_unknown(self, chain: ProtectionChain) -> None:
        assert await chain.deregister_observer("missing", "gone") is False


# -----------------------------------------------------------------------------
# Layers and checks
# -----------------------------------------------------------------------------


class TestCheckAction:
    @pytest.mark.asyncio
    async def test_delete_observer_blocked(self, chain: ProtectionChain, events: EventBus) -> None:
        observer_id = chain.register_observer(ObserverType.AI_AGENT)

        result = await chain.check_action("delete_observer", [observer_id])

        assert result.allowed is False
        assert [v.violated_right for v in result.violations] == ["exist"]
        assert result.violations[0].severity == 10
        assert result.violations[0].prevented is True
        assert "Attempted observer deletion blocked" in result.warnings
        assert events.events_of(RIGHTS_VIOLATION)[-1].subject_id == result.violations[0].id

    @pytest.mark.asyncio
    async def test_benign_action_allowed(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.HUMAN)
        result = await chain.check_action("send_greeting", [observer_id])
        assert result.allowed is True
        assert result.violations == []

    def test_layers_ordered_by_priority(self, chain: ProtectionChain) -> None:
        low = SpyLayer("low", 1)
        chain.add_protection_layer(low)
        chain.add_protection_layer(dignity_layer())

        assert [layer.priority for layer in chain.get_layers()] == [10, 9, 8, 7, 1]
        assert all(isinstance(layer, ProtectionLayer) for layer in chain.get_layers())

    @pytest.mark.asyncio
    async def test_blocking_denial_short_circuits(self, chain: ProtectionChain) -> None:
        spy = SpyLayer("after", 5)
        chain.add_protection_layer(spy)
        observer_id = chain.register_observer(ObserverType.HUMAN)

        result = await chain.check_action("erase_observer", [observer_id])

        assert result.allowed is False
        assert spy.calls == []

    @pytest.mark.asyncio
    async def test_non_blocking_denial_continues(self, chain: ProtectionChain) -> None:
        spy = SpyLayer("after", 5)
        chain.add_protection_layer(spy)
        observer_id = chain.register_observer(ObserverType.HUMAN)

        result = await chain.check_action("rewrite_history", [observer_id])

        assert result.allowed is False
        assert [v.violated_right for v in result.violations] == ["narrative"]
        assert spy.calls == [(observer_id, "rewrite_history")]

    @pytest.mark.asyncio
    async def test_other_observers_still_evaluated(self, chain: ProtectionChain) -> None:
        first = chain.register_observer(ObserverType.HUMAN)
        second = chain.register_observer(ObserverType.AI_AGENT)

        result = await chain.check_action("terminate", [first, second])

        assert sorted(v.observer_id for v in result.violations) == sorted([first, second])

    @pytest.mark.asyncio
    async def test_unknown_observer_warns(self, chain: ProtectionChain, console) -> None:
        result = await chain.check_action("delete_observer", ["ghost"])

        assert result.allowed is True
        assert result.warnings == ["Observer ghost not found"]
        assert "Observer ghost not found" in console.file.getvalue()

    @pytest.mark.asyncio
    async def test_raising_layer_denies(self, chain: ProtectionChain, console) -> None:
        chain.add_protection_layer(BrokenLayer())
        observer_id = chain.register_observer(ObserverType.HUMAN)

        result = await chain.check_action("send_greeting", [observer_id])

        assert result.allowed is False
        assert result.violations == []
        assert "Layer Broken failed: RuntimeError: layer offline" in result.warnings
        assert "layer offline" in console.file.getvalue()

    def test_keyword_layer_rejects_unknown_right(self) -> None:
        with pytest.raises(ValueError, match="Unknown right"):
            KeywordLayer(name="x", priority=1, right="flight", severity=1, tokens=("a",), warning="w")

    def test_default_blocking_threshold(self) -> None:
        assert existence_layer().priority >= BLOCKING_PRIORITY
        assert dignity_layer().priority < BLOCKING_PRIORITY


# -----------------------------------------------------------------------------
# Queries
# -----------------------------------------------------------------------------


class TestQueries:
    @pytest.mark.asyncio
    async def test_violation_filters(self, chain: ProtectionChain) -> None:
        first = chain.register_observer(ObserverType.HUMAN)
        second = chain.register_observer(ObserverType.HUMAN)
        await chain.check_action("delete_observer", [first])
        await chain.check_action("modify_memory", [second])

        assert len(chain.get_violations()) == 2
        assert len(chain.get_violations(observer_id=first)) == 1
        assert chain.get_violations(right="narrative")[0].observer_id == second
        assert len(chain.get_violations(min_severity=8)) == 1

    @pytest.mark.asyncio
    async def test_naive_since_read_as_utc(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.HUMAN)
        await chain.check_action("delete_observer", [observer_id])

        naive_minute_ago = (utc_now() - timedelta(minutes=1)).replace(tzinfo=None)
        assert len(chain.get_violations(since=naive_minute_ago)) == 1

    @pytest.mark.asyncio
    async def test_protection_summary(self, chain: ProtectionChain) -> None:
        observer_id = chain.register_observer(ObserverType.AI_AGENT)
        chain.add_narrative_entry(observer_id, "started")
        await chain.check_action("optimize_observer", [observer_id])
        await chain.check_action("alter_timeline", [observer_id])

        summary = chain.get_protection_summary(observer_id)
        assert summary is not None
        assert summary.total_violations == 2
        assert summary.critical_violations == 1
        assert summary.protection_layers_active == 3
        assert summary.narrative_length == 1

    def test_summary_unknown_observer(self, chain: ProtectionChain) -> None:
        assert chain.get_protection_summary("missing") is None
