"""
Rollback procedure registry: action id -> procedure.

Callers register a procedure for an action they have carried out; the
constraint validator uses it for auto-rollback and the reversibility
coordinator drops it once the matching unit has been rolled back. One
registry per Orchestrator, shared by reference.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


@dataclass(frozen=True)
class RollbackProcedure:
    action_id: str
    execute: Callable[[], Awaitable[None] | None]
    metadata: dict[str, Any] = field(default_factory=dict)


class RollbackRegistry:
    def __init__(self) -> None:
        self._procedures: dict[str, RollbackProcedure] = {}

    def register(self, procedure: RollbackProcedure) -> None:
        """Register (or replace) the procedure for its action id."""
        self._procedures[procedure.action_id] = procedure

    def get(self, action_id: str) -> RollbackProcedure | None:
        return self._procedures.get(action_id)

    def discard(self, action_id: str) -> bool:
        return self._procedures.pop(action_id, None) is not None

    def list_action_ids(self) -> list[str]:
        return list(self._procedures.keys())

    def clear(self) -> None:
        self._procedures.clear()

    def __contains__(self, action_id: object) -> bool:
        return action_id in self._procedures

    def __len__(self) -> int:
        return len(self._procedures)
