from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from ..util import new_ulid, utc_now


class ConstraintKind(str, Enum):
    OBSERVER_PROTECTION = "observer_protection"
    NON_COERCION = "non_coercion"
    REVERSIBILITY = "reversibility"
    NON_TRIVIALITY = "non_triviality"
    MINIMAL_INTERVENTION = "minimal_intervention"


@dataclass(frozen=True)
class Action:
    """A proposed operation submitted for validation."""

    id: str
    kind: str  # e.g. "delete_observer", "apply_constraint"
    description: str = ""
    target_observers: tuple[str, ...] = ()
    reversible: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def new(
        cls,
        kind: str,
        description: str = "",
        *,
        target_observers: list[str] | tuple[str, ...] | None = None,
        reversible: bool = True,
        metadata: dict[str, Any] | None = None,
    ) -> Action:
        return cls(
            id=new_ulid(),
            kind=kind,
            description=description,
            target_observers=tuple(target_observers or ()),
            reversible=reversible,
            metadata=dict(metadata or {}),
        )

    @property
    def targets_observers(self) -> bool:
        return bool(self.target_observers)


ActionPredicate = Callable[[Action], bool]


@dataclass(frozen=True)
class Predicate:
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ConstraintDef:
    """Constraint as data: the predicate is looked up by name at build time."""

    kind: ConstraintKind
    description: str
    severity: int
    predicate: Predicate


@dataclass(frozen=True)
class Constraint:
    id: str
    kind: ConstraintKind
    description: str
    predicate: ActionPredicate  # True = action complies
    severity: int  # 1-10
    created_at: datetime = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not 1 <= self.severity <= 10:
            raise ValueError(f"severity must be within 1-10, got {self.severity}")

    @classmethod
    def new(
        cls,
        kind: ConstraintKind,
        description: str,
        predicate: ActionPredicate,
        severity: int,
    ) -> Constraint:
        return cls(
            id=new_ulid(),
            kind=kind,
            description=description,
            predicate=predicate,
            severity=severity,
        )


@dataclass(frozen=True)
class Violation:
    id: str
    action: Action
    constraint: Constraint
    severity: int  # computed, capped at 10
    auto_rollback: bool
    created_at: datetime = field(default_factory=utc_now)


@dataclass
class ValidationResult:
    valid: bool
    action: Action
    violations: list[Violation] = field(default_factory=list)


@dataclass
class ApplyResult:
    """Audit trail of one apply_constraint call."""

    constraint: Constraint
    revalidation_violations: list[Violation] = field(default_factory=list)
    self_check: ValidationResult | None = None

    @property
    def self_consistent(self) -> bool:
        return self.self_check is not None and self.self_check.valid


@dataclass
class ComplianceSummary:
    total_actions: int
    total_violations: int
    total_constraints: int
    compliance_rate: float
    critical_violations: int
    last_violation: Violation | None = None

