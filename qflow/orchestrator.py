"""
Orchestrator: one validator, one protection chain, one coordinator.

The three engines share an EventBus and a RollbackRegistry. Two routes are
wired on the bus:
- violation.recorded for an action that targets observers replays the
  action kind through the protection chain for those observers;
- rollback.failed is forwarded to the diagnostic channel.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Literal

from rich.console import Console

from .config import EngineConfig, load_config
from .constraints import Action, ConstraintValidator, ValidationResult, Violation
from .events import ROLLBACK_FAILED, VIOLATION_RECORDED, EventBus, Notification
from .protection import ProtectionChain, ProtectionResult, dignity_layer
from .registry import RollbackRegistry
from .reversibility import ReversibilityCoordinator, RollbackBatchResult
from .util import utc_now

SystemStatus = Literal["healthy", "warning", "critical"]

COMPLIANCE_WARNING_THRESHOLD = 95.0
ROLLBACK_WARNING_THRESHOLD = 90.0


@dataclass
class SystemHealth:
    ethical_compliance: float
    rollback_success: float
    active_constraints: int
    critical_violations: int
    reversibility_enabled: bool
    system_status: SystemStatus


@dataclass
class SubmissionResult:
    validation: ValidationResult
    protection_results: list[ProtectionResult] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return self.validation.valid

    @property
    def protection(self) -> ProtectionResult | None:
        """All protection replays for this action folded into one result."""
        if not self.protection_results:
            return None
        merged = ProtectionResult(allowed=all(r.allowed for r in self.protection_results))
        for r in self.protection_results:
            merged.violations.extend(r.violations)
            merged.warnings.extend(r.warnings)
        return merged


def determine_status(
    compliance_rate: float,
    critical_violations: int,
    rollback_success_rate: float,
) -> SystemStatus:
    if critical_violations > 0:
        return "critical"
    if compliance_rate < COMPLIANCE_WARNING_THRESHOLD or rollback_success_rate < ROLLBACK_WARNING_THRESHOLD:
        return "warning"
    return "healthy"


class Orchestrator:
    def __init__(self, config: EngineConfig | None = None, *, console: Console | None = None):
        self.config = config or EngineConfig()
        self.console = console or Console(stderr=True)
        self.events = EventBus(console=self.console, history_size=self.config.event_history_size)
        self.rollback_registry = RollbackRegistry()

        self.diagnostics: list[Notification] = []
        self._replays: dict[str, list[ProtectionResult]] = {}
        self._submitting: set[str] = set()
        self._pending: set[asyncio.Task] = set()

        # Subscribe before the validator applies its core rules.
        self.events.subscribe(VIOLATION_RECORDED, self._on_violation)
        self.events.subscribe(ROLLBACK_FAILED, self._on_rollback_failed)

        self.protection = ProtectionChain(events=self.events, console=self.console)
        if self.config.strict_mode:
            self.protection.add_protection_layer(dignity_layer())

        self.reversibility = ReversibilityCoordinator(
            config=self.config,
            events=self.events,
            rollback_registry=self.rollback_registry,
            console=self.console,
        )
        self.constraints = ConstraintValidator(
            config=self.config,
            events=self.events,
            rollback_registry=self.rollback_registry,
            console=self.console,
        )

    @classmethod
    def from_config_file(cls, path: Path, *, console: Console | None = None) -> Orchestrator:
        return cls(load_config(path), console=console)

    # -------------------------------------------------------------------------
    # Routing
    # -------------------------------------------------------------------------

    def _on_violation(self, event: Notification) -> None:
        violation: Violation = event.payload["violation"]
        if not violation.action.target_observers:
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._replay(violation))
            return

        task = loop.create_task(self._replay(violation))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _replay(self, violation: Violation) -> ProtectionResult:
        action = violation.action
        result = await self.protection.check_action(action.kind, list(action.target_observers))
        # Only kept for the submit() call awaiting this action.
        if action.id in self._submitting:
            self._replays.setdefault(action.id, []).append(result)
        return result

    def _on_rollback_failed(self, event: Notification) -> None:
        self.diagnostics.append(event)
        record = event.payload.get("record")
        name = record.unit_name if record is not None else event.subject_id
        error = record.error if record is not None else event.payload.get("error")
        self.console.print(f"[red]Ethical concern: rollback failed for {name}: {error}[/red]")

    async def settle(self) -> None:
        """Wait for protection replays and auto-rollbacks scheduled so far."""
        await self.constraints.wait_for_rollbacks()
        while self._pending:
            pending = list(self._pending)
            self._pending.difference_update(pending)
            await asyncio.gather(*pending, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    async def submit(self, action: Action) -> SubmissionResult:
        self._submitting.add(action.id)
        try:
            validation = self.constraints.validate_action(action)
            await self.settle()
        finally:
            self._submitting.discard(action.id)
            replays = self._replays.pop(action.id, [])
        return SubmissionResult(validation=validation, protection_results=replays)

    def get_system_health(self) -> SystemHealth:
        compliance = self.constraints.get_compliance_summary()
        reversibility = self.reversibility.get_reversibility_status()

        return SystemHealth(
            ethical_compliance=compliance.compliance_rate,
            rollback_success=reversibility.rollback_success_rate,
            active_constraints=compliance.total_constraints,
            critical_violations=compliance.critical_violations,
            reversibility_enabled=reversibility.has_snapshots,
            system_status=determine_status(
                compliance.compliance_rate,
                compliance.critical_violations,
                reversibility.rollback_success_rate,
            ),
        )

    async def emergency_shutdown(self) -> RollbackBatchResult:
        """Roll back every unit created during the last hour."""
        self.console.print("Initiating emergency shutdown with full rollback...", style="yellow")
        result = await self.reversibility.rollback_since(utc_now() - timedelta(hours=1))
        self.console.print(
            f"Emergency shutdown complete: {result.succeeded}/{result.total} rolled back",
            style="green" if result.failed == 0 else "red",
        )
        return result
