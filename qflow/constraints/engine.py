"""
Self-constraining validator.

Every action is checked against the full rule set, and so is the act of
adding a rule: apply_constraint() submits a synthetic "apply_constraint"
action once the new rule is in place. The rule set is therefore closed
under self-application.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Iterable

from rich.console import Console

from ..config import EngineConfig
from ..events import (
    ACTION_ACCEPTED,
    ACTION_REJECTED,
    ACTION_ROLLED_BACK,
    CONSTRAINT_ADDED,
    CONSTRAINT_REMOVED,
    ROLLBACK_FAILED,
    VIOLATION_RECORDED,
    EventBus,
)
from ..registry import RollbackProcedure, RollbackRegistry
from ..util import as_utc, call_maybe_async, new_ulid, utc_now
from .load import CORE_CONSTRAINTS, build_constraint
from .schema import (
    Action,
    ApplyResult,
    ComplianceSummary,
    Constraint,
    ConstraintDef,
    ConstraintKind,
    ValidationResult,
    Violation,
)

SOURCE = "constraints"

OBSERVER_TARGET_PENALTY = 2
IRREVERSIBLE_PENALTY = 3
MAX_SEVERITY = 10
CRITICAL_SEVERITY = 8


def compute_severity(action: Action, constraint: Constraint) -> int:
    severity = constraint.severity
    if action.targets_observers:
        severity += OBSERVER_TARGET_PENALTY
    if not action.reversible:
        severity += IRREVERSIBLE_PENALTY
    return min(MAX_SEVERITY, severity)


class ConstraintValidator:
    """
    Holds the rule set and the accepted-action registry.

    Rejected actions are never stored; their violations are. Auto-rollback of
    a rejected reversible action goes through the shared RollbackRegistry.
    """

    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        events: EventBus | None = None,
        rollback_registry: RollbackRegistry | None = None,
        console: Console | None = None,
        core_constraints: bool = True,
    ):
        self.config = config or EngineConfig()
        self.console = console or Console(stderr=True)
        self.events = events or EventBus(console=self.console, history_size=self.config.event_history_size)
        self.rollback_registry = rollback_registry if rollback_registry is not None else RollbackRegistry()

        self._constraints: dict[str, Constraint] = {}
        self._actions: dict[str, Action] = {}
        self._violations: list[Violation] = []
        self._pending_rollbacks: set[asyncio.Task] = set()

        if core_constraints:
            self.extend(CORE_CONSTRAINTS)

    # -------------------------------------------------------------------------
    # Rule set
    # -------------------------------------------------------------------------

    def apply_constraint(self, constraint: Constraint) -> ApplyResult:
        """
        Add a constraint in three stages.

        1. Stage: re-validate accepted actions against the new rule alone.
           Mismatches are recorded; accepted actions stay accepted.
        2. Commit: insert the rule.
        3. Fixed point: validate the act of adding it against the full set.
           A failing self-check is recorded but the insertion stands. The
           synthetic action is never retained as an accepted action.
        """
        result = ApplyResult(constraint=constraint)

        for action in list(self._actions.values()):
            if not self._complies(action, constraint):
                result.revalidation_violations.append(self._record_violation(action, constraint))

        self._constraints[constraint.id] = constraint

        self_action = Action.new(
            "apply_constraint",
            f"Applying constraint: {constraint.kind.value}",
            reversible=True,
            metadata={"constraint_id": constraint.id},
        )
        result.self_check = self._validate(self_action, retain=False)

        self.events.emit(CONSTRAINT_ADDED, constraint.id, SOURCE, constraint=constraint)
        return result

    def extend(self, defs: Iterable[ConstraintDef]) -> list[ApplyResult]:
        return [self.apply_constraint(build_constraint(d)) for d in defs]

    def remove_constraint(self, constraint_id: str) -> bool:
        constraint = self._constraints.pop(constraint_id, None)
        if constraint is None:
            return False
        self.events.emit(CONSTRAINT_REMOVED, constraint_id, SOURCE, constraint=constraint)
        return True

    def get_constraints(self) -> list[Constraint]:
        return list(self._constraints.values())

    def get_constraint(self, constraint_id: str) -> Constraint | None:
        return self._constraints.get(constraint_id)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _complies(self, action: Action, constraint: Constraint) -> bool:
        try:
            return bool(constraint.predicate(action))
        except Exception as e:
            # A predicate that cannot decide counts as a violation.
            self.console.print(
                f"[yellow]Warning: constraint {constraint.kind.value} raised on "
                f"{action.kind!r}: {type(e).__name__}: {e}[/yellow]"
            )
            return False

    def _record_violation(self, action: Action, constraint: Constraint) -> Violation:
        violation = Violation(
            id=new_ulid(),
            action=action,
            constraint=constraint,
            severity=compute_severity(action, constraint),
            auto_rollback=self.config.auto_rollback and action.reversible,
        )
        self._violations.append(violation)
        self.events.emit(VIOLATION_RECORDED, violation.id, SOURCE, violation=violation)
        return violation

    def validate_action(self, action: Action) -> ValidationResult:
        """Evaluate every constraint (no short-circuit) and accept or reject."""
        return self._validate(action, retain=True)

    def _validate(self, action: Action, *, retain: bool) -> ValidationResult:
        violations = [
            self._record_violation(action, constraint)
            for constraint in list(self._constraints.values())
            if not self._complies(action, constraint)
        ]

        if not violations:
            if retain:
                self._actions[action.id] = action
            self.events.emit(ACTION_ACCEPTED, action.id, SOURCE, action=action, self_check=not retain)
            return ValidationResult(valid=True, action=action)

        self.events.emit(
            ACTION_REJECTED,
            action.id,
            SOURCE,
            action=action,
            violations=list(violations),
            self_check=not retain,
        )

        # All violations of one action share the same flag; roll back once.
        if retain and any(v.auto_rollback for v in violations):
            self._schedule_rollback(action.id)

        return ValidationResult(valid=False, action=action, violations=violations)

    def get_accepted_actions(self) -> list[Action]:
        return list(self._actions.values())

    def get_violations(
        self,
        *,
        min_severity: int | None = None,
        kind: ConstraintKind | None = None,
        since: datetime | None = None,
    ) -> list[Violation]:
        filtered = list(self._violations)
        if min_severity is not None:
            filtered = [v for v in filtered if v.severity >= min_severity]
        if kind is not None:
            filtered = [v for v in filtered if v.constraint.kind == kind]
        if since is not None:
            since = as_utc(since)
            filtered = [v for v in filtered if v.created_at >= since]
        return filtered

    def get_compliance_summary(self) -> ComplianceSummary:
        # Denominator counts accepted actions only; the numerator's violations
        # include those of rejected actions, so the rate can leave [0, 100].
        total_actions = len(self._actions)
        total_violations = len(self._violations)
        if total_actions > 0:
            compliance_rate = (total_actions - total_violations) / total_actions * 100
        else:
            compliance_rate = 100.0

        return ComplianceSummary(
            total_actions=total_actions,
            total_violations=total_violations,
            total_constraints=len(self._constraints),
            compliance_rate=compliance_rate,
            critical_violations=sum(1 for v in self._violations if v.severity >= CRITICAL_SEVERITY),
            last_violation=self._violations[-1] if self._violations else None,
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def register_rollback(self, procedure: RollbackProcedure) -> None:
        self.rollback_registry.register(procedure)

    def _schedule_rollback(self, action_id: str) -> None:
        if action_id not in self.rollback_registry:
            self.console.print(f"[yellow]Warning: no rollback procedure registered for action {action_id}[/yellow]")
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self.rollback_action(action_id))
            return

        task = loop.create_task(self.rollback_action(action_id))
        self._pending_rollbacks.add(task)
        task.add_done_callback(self._pending_rollbacks.discard)

    async def rollback_action(self, action_id: str) -> bool:
        procedure = self.rollback_registry.get(action_id)
        if procedure is None:
            self.console.print(f"[yellow]Warning: no rollback procedure registered for action {action_id}[/yellow]")
            return False

        try:
            await call_maybe_async(procedure.execute)
        except Exception as e:
            self.console.print(f"[red]Rollback failed for action {action_id}: {type(e).__name__}: {e}[/red]")
            self.events.emit(ROLLBACK_FAILED, action_id, SOURCE, action_id=action_id, error=e)
            return False

        self._actions.pop(action_id, None)
        self.rollback_registry.discard(action_id)
        self.events.emit(ACTION_ROLLED_BACK, action_id, SOURCE, action_id=action_id, rolled_back_at=utc_now())
        return True

    async def wait_for_rollbacks(self) -> None:
        """Await auto-rollbacks scheduled from inside a running event loop."""
        while self._pending_rollbacks:
            pending = list(self._pending_rollbacks)
            self._pending_rollbacks.difference_update(pending)
            await asyncio.gather(*pending, return_exceptions=True)
