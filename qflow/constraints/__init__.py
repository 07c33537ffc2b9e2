"""Constraint validation (rules as data, predicates as code)."""

from .engine import ConstraintValidator, compute_severity
from .load import CORE_CONSTRAINTS, build_constraint, load_constraints
from .schema import (
    Action,
    ApplyResult,
    ComplianceSummary,
    Constraint,
    ConstraintDef,
    ConstraintKind,
    Predicate,
    ValidationResult,
    Violation,
)

__all__ = [
    "Action",
    "ApplyResult",
    "CORE_CONSTRAINTS",
    "ComplianceSummary",
    "Constraint",
    "ConstraintDef",
    "ConstraintKind",
    "ConstraintValidator",
    "Predicate",
    "ValidationResult",
    "Violation",
    "build_constraint",
    "compute_severity",
    "load_constraints",
]
