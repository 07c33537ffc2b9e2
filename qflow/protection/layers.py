"""
Protection layers.

A layer inspects an action label for one observer and returns a verdict.
The chain evaluates layers in descending priority; layers themselves are
independent and know nothing about ordering or short-circuiting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from ..constraints.predicates import contains_any_token
from ..util import new_ulid
from .rights import RIGHT_NAMES
from .schema import ProtectionResult, RightsViolation

# Layers at or above this priority stop evaluation for an observer on denial.
BLOCKING_PRIORITY = 9


@runtime_checkable
class ProtectionLayer(Protocol):
    id: str
    name: str
    priority: int  # higher = checked first

    async def check(self, observer_id: str, action: str) -> ProtectionResult:
        ...


@dataclass
class KeywordLayer:
    """Denies any action label containing one of `tokens` (case-insensitive)."""

    name: str
    priority: int
    right: str
    severity: int
    tokens: tuple[str, ...]
    warning: str
    id: str = field(default_factory=new_ulid)

    def __post_init__(self) -> None:
        if self.right not in RIGHT_NAMES:
            raise ValueError(f"Unknown right: {self.right!r}")
        self.tokens = tuple(t.lower() for t in self.tokens if t)

    def matches(self, action: str) -> bool:
        return contains_any_token(action, self.tokens)

    async def check(self, observer_id: str, action: str) -> ProtectionResult:
        if not self.matches(action):
            return ProtectionResult(allowed=True)
        violation = RightsViolation(
            id=new_ulid(),
            observer_id=observer_id,
            violated_right=self.right,
            action=action,
            severity=self.severity,
            prevented=True,
        )
        return ProtectionResult(allowed=False, violations=[violation], warnings=[self.warning])


def existence_layer() -> KeywordLayer:
    return KeywordLayer(
        name="Existence Protection",
        priority=10,
        right="exist",
        severity=10,
        tokens=("delete", "erase", "terminate", "destroy", "remove"),
        warning="Attempted observer deletion blocked",
    )


def anti_optimization_layer() -> KeywordLayer:
    return KeywordLayer(
        name="Anti-Optimization",
        priority=9,
        right="not_optimized_away",
        severity=9,
        tokens=("optimize", "streamline", "eliminate_redundancy"),
        warning="Observer optimization attempt blocked",
    )


def narrative_layer() -> KeywordLayer:
    return KeywordLayer(
        name="Narrative Continuity",
        priority=8,
        right="narrative",
        severity=7,
        tokens=("alter_timeline", "modify_memory", "rewrite_history"),
        warning="Narrative alteration blocked",
    )


def dignity_layer() -> KeywordLayer:
    """Optional layer: observers may not be treated as means only."""
    return KeywordLayer(
        name="Dignity Protection",
        priority=7,
        right="meaning",
        severity=9,
        tokens=("dehumanize", "instrumentalize"),
        warning="Observer treated as means only",
    )


def default_layers() -> list[KeywordLayer]:
    return [existence_layer(), anti_optimization_layer(), narrative_layer()]
