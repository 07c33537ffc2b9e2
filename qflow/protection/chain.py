"""
Observer protection chain.

Holds the observer registry, per-observer rights and narratives, and an
ordered list of protection layers. check_action() runs every layer for every
targeted observer, highest priority first, and stops early for one observer
once a blocking layer (priority >= 9) has denied.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from rich.console import Console

from ..events import (
    NARRATIVE_ENTRY_ADDED,
    OBSERVER_DEREGISTERED,
    OBSERVER_REGISTERED,
    PROTECTION_LAYER_ADDED,
    RIGHTS_UPDATED,
    RIGHTS_VIOLATION,
    EventBus,
)
from ..util import as_utc, new_ulid, utc_now
from .layers import BLOCKING_PRIORITY, ProtectionLayer, default_layers
from .rights import FUNDAMENTAL_RIGHTS, RIGHT_NAMES, RightsSet
from .schema import (
    Observer,
    ObserverType,
    ProtectionLevel,
    ProtectionResult,
    ProtectionSummary,
    RightsViolation,
)

SOURCE = "protection"
CRITICAL_SEVERITY = 8


def initial_rights(level: ProtectionLevel) -> RightsSet:
    if level == ProtectionLevel.MINIMAL:
        return RightsSet(ignorance=False, privacy=False)
    return RightsSet()


class ProtectionChain:
    def __init__(
        self,
        *,
        events: EventBus | None = None,
        console: Console | None = None,
        layers: list[ProtectionLayer] | None = None,
    ):
        self.console = console or Console(stderr=True)
        self.events = events or EventBus(console=self.console)

        self._observers: dict[str, Observer] = {}
        self._rights: dict[str, RightsSet] = {}
        self._narratives: dict[str, list[str]] = {}
        self._layers: list[ProtectionLayer] = []
        self._violations: list[RightsViolation] = []

        for layer in default_layers() if layers is None else layers:
            self.add_protection_layer(layer)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def register_observer(
        self,
        observer_type: ObserverType,
        *,
        consciousness: bool = True,
        metadata: dict[str, Any] | None = None,
        protection_level: ProtectionLevel = ProtectionLevel.FULL,
    ) -> str:
        observer = Observer(
            id=new_ulid(),
            observer_type=observer_type,
            consciousness=consciousness,
            protection_level=protection_level,
            metadata=dict(metadata or {}),
        )
        self._observers[observer.id] = observer
        self._rights[observer.id] = initial_rights(protection_level)
        self._narratives[observer.id] = []

        self.events.emit(OBSERVER_REGISTERED, observer.id, SOURCE, observer=observer)
        return observer.id

    async def deregister_observer(self, observer_id: str, reason: str) -> bool:
        """Remove an observer, provided the protection layers allow it."""
        check = await self.check_action("deregister_observer", [observer_id])
        if not check.allowed:
            self.console.print(
                f"[yellow]Warning: deregistration of observer {observer_id} blocked "
                f"({len(check.violations)} violation(s))[/yellow]"
            )
            return False

        if observer_id not in self._observers:
            return False

        self.add_narrative_entry(observer_id, f"Deregistered: {reason}")
        observer = self._observers.pop(observer_id)
        self._rights.pop(observer_id, None)
        # Narrative and violation history are kept.

        self.events.emit(OBSERVER_DEREGISTERED, observer_id, SOURCE, observer=observer, reason=reason)
        return True

    def get_observer(self, observer_id: str) -> Observer | None:
        return self._observers.get(observer_id)

    def list_observers(self) -> list[Observer]:
        return list(self._observers.values())

    # -------------------------------------------------------------------------
    # Rights
    # -------------------------------------------------------------------------

    def get_observer_rights(self, observer_id: str) -> RightsSet | None:
        return self._rights.get(observer_id)

    def update_observer_rights(self, observer_id: str, updates: dict[str, Any]) -> bool:
        """
        Merge a partial rights update.

        Clearing a fundamental right is dropped with a warning, as are unknown
        right names and non-boolean values. Returns False only for an unknown
        observer.
        """
        current = self._rights.get(observer_id)
        if current is None:
            return False

        applied: dict[str, bool] = {}
        for name, value in updates.items():
            if name not in RIGHT_NAMES:
                self.console.print(f"[yellow]Warning: unknown right ignored: {name}[/yellow]")
                continue
            if not isinstance(value, bool):
                self.console.print(f"[yellow]Warning: right {name} needs a boolean, got {value!r}[/yellow]")
                continue
            if name in FUNDAMENTAL_RIGHTS and value is False:
                self.console.print(f"[yellow]Warning: cannot remove fundamental right: {name}[/yellow]")
                continue
            applied[name] = value

        new_rights = current.merged(applied)
        self._rights[observer_id] = new_rights
        self.events.emit(RIGHTS_UPDATED, observer_id, SOURCE, observer_id=observer_id, rights=new_rights)
        return True

    # -------------------------------------------------------------------------
    # Narrative
    # -------------------------------------------------------------------------

    def add_narrative_entry(self, observer_id: str, entry: str) -> bool:
        narrative = self._narratives.get(observer_id)
        if narrative is None or observer_id not in self._observers:
            return False
        narrative.append(f"[{utc_now().isoformat()}] {entry}")
        self.events.emit(NARRATIVE_ENTRY_ADDED, observer_id, SOURCE, observer_id=observer_id, entry=entry)
        return True

    def get_observer_narrative(self, observer_id: str) -> list[str]:
        return list(self._narratives.get(observer_id, []))

    # -------------------------------------------------------------------------
    # Layers
    # -------------------------------------------------------------------------

    def add_protection_layer(self, layer: ProtectionLayer) -> None:
        self._layers.append(layer)
        # sort() is stable: equal priorities keep insertion order.
        self._layers.sort(key=lambda layer_: layer_.priority, reverse=True)
        self.events.emit(PROTECTION_LAYER_ADDED, layer.id, SOURCE, layer=layer)

    def get_layers(self) -> list[ProtectionLayer]:
        return list(self._layers)

    async def _run_layer(self, layer: ProtectionLayer, observer_id: str, action: str) -> ProtectionResult:
        try:
            return await layer.check(observer_id, action)
        except Exception as e:
            # A layer that cannot decide denies.
            message = f"Layer {layer.name} failed: {type(e).__name__}: {e}"
            self.console.print(f"[yellow]Warning: {message}[/yellow]")
            return ProtectionResult(allowed=False, warnings=[message])

    async def check_action(self, action: str, observer_ids: list[str]) -> ProtectionResult:
        result = ProtectionResult(allowed=True)
        layers = list(self._layers)

        for observer_id in observer_ids:
            if observer_id not in self._observers:
                message = f"Observer {observer_id} not found"
                self.console.print(f"[yellow]Warning: {message}[/yellow]")
                result.warnings.append(message)
                continue

            for layer in layers:
                verdict = await self._run_layer(layer, observer_id, action)
                result.violations.extend(verdict.violations)
                result.warnings.extend(verdict.warnings)

                if not verdict.allowed:
                    result.allowed = False
                    if layer.priority >= BLOCKING_PRIORITY:
                        break

        for violation in result.violations:
            self._violations.append(violation)
            self.events.emit(RIGHTS_VIOLATION, violation.id, SOURCE, violation=violation)

        return result

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_violations(
        self,
        *,
        observer_id: str | None = None,
        right: str | None = None,
        min_severity: int | None = None,
        since: datetime | None = None,
    ) -> list[RightsViolation]:
        filtered = list(self._violations)
        if observer_id is not None:
            filtered = [v for v in filtered if v.observer_id == observer_id]
        if right is not None:
            filtered = [v for v in filtered if v.violated_right == right]
        if min_severity is not None:
            filtered = [v for v in filtered if v.severity >= min_severity]
        if since is not None:
            since = as_utc(since)
            filtered = [v for v in filtered if v.created_at >= since]
        return filtered

    def get_protection_summary(self, observer_id: str) -> ProtectionSummary | None:
        observer = self._observers.get(observer_id)
        rights = self._rights.get(observer_id)
        if observer is None or rights is None:
            return None

        violations = self.get_violations(observer_id=observer_id)
        return ProtectionSummary(
            observer=observer,
            rights=rights,
            total_violations=len(violations),
            critical_violations=sum(1 for v in violations if v.severity >= CRITICAL_SEVERITY),
            protection_layers_active=len(self._layers),
            narrative_length=len(self._narratives.get(observer_id, [])),
        )
