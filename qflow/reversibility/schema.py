from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Generic, TypeVar

from ..util import utc_now

T = TypeVar("T")


@dataclass
class ReversibleUnit:
    """
    A unit of work with paired execute/rollback callables.

    Either callable may be a plain function or a coroutine function.
    `completed` and `rolled_back` are never both True.
    """

    id: str
    name: str
    execute: Callable[[], Any]
    rollback: Callable[[], Any]
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    completed: bool = False
    rolled_back: bool = False

    @property
    def terminal(self) -> bool:
        return self.completed or self.rolled_back


@dataclass
class Snapshot:
    unit_id: str
    before_state: Any
    after_state: Any = None
    created_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class RollbackRecord:
    id: str
    unit_id: str
    unit_name: str
    success: bool
    created_at: datetime = field(default_factory=utc_now)
    error: BaseException | None = None


@dataclass(frozen=True)
class RollbackOptions:
    max_attempts: int = 3
    timeout_ms: int = 30000
    on_error: Callable[[BaseException], Any] | None = None
    validate_before_rollback: Callable[[Snapshot], bool] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be a positive integer")
        if self.timeout_ms <= 0:
            raise ValueError("timeout_ms must be positive")


@dataclass
class ExecutionResult(Generic[T]):
    success: bool
    unit_id: str
    attempts: int
    result: T | None = None
    error: BaseException | None = None


@dataclass(frozen=True)
class RollbackOutcome:
    unit_id: str
    success: bool


@dataclass
class RollbackBatchResult:
    total: int
    succeeded: int
    failed: int
    results: list[RollbackOutcome] = field(default_factory=list)


@dataclass
class ReversibilityStatus:
    total_units: int
    completed_units: int
    rolled_back_units: int
    pending_units: int
    total_rollbacks: int
    successful_rollbacks: int
    failed_rollbacks: int
    rollback_success_rate: float
    has_snapshots: bool
