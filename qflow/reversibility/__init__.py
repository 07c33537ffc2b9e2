"""Bounded-retry execution with rollback."""

from .coordinator import ExecutionTimeout, ReversibilityCoordinator
from .schema import (
    ExecutionResult,
    ReversibilityStatus,
    ReversibleUnit,
    RollbackBatchResult,
    RollbackOptions,
    RollbackOutcome,
    RollbackRecord,
    Snapshot,
)

__all__ = [
    "ExecutionResult",
    "ExecutionTimeout",
    "ReversibilityCoordinator",
    "ReversibilityStatus",
    "ReversibleUnit",
    "RollbackBatchResult",
    "RollbackOptions",
    "RollbackOutcome",
    "RollbackRecord",
    "Snapshot",
]
