"""
Reversibility coordinator: bounded-retry execution with rollback.

execute_with_rollback() runs a unit's execute callable up to max_attempts
times, each raced against a timer. Between failed attempts, and once more
after the last one, the unit gets a rollback pass. Timeouts are soft: the
coordinator stops waiting but the abandoned call keeps running, so units of
work must tolerate being abandoned.
"""

from __future__ import annotations

import asyncio
import inspect
import time
from collections import deque
from datetime import datetime
from typing import Any, Callable

from rich.console import Console

from ..config import EngineConfig
from ..events import (
    CLEANUP_COMPLETED,
    ROLLBACK_COMPLETED,
    ROLLBACK_FAILED,
    ROLLBACK_STARTED,
    SNAPSHOT_CREATED,
    SNAPSHOT_UPDATED,
    UNIT_COMPLETED,
    UNIT_ERRORED,
    EventBus,
)
from ..registry import RollbackProcedure, RollbackRegistry
from ..util import as_utc, call_maybe_async, new_ulid
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

SOURCE = "reversibility"

SnapshotCheck = Callable[[Snapshot], bool]


class ExecutionTimeout(TimeoutError):
    """The timer won the race against an execute or rollback call."""


def _truncate(message: str, limit: int = 500) -> str:
    return message[:limit] if len(message) > limit else message


class ReversibilityCoordinator:
    def __init__(
        self,
        *,
        config: EngineConfig | None = None,
        events: EventBus | None = None,
        rollback_registry: RollbackRegistry | None = None,
        console: Console | None = None,
    ):
        self.config = config or EngineConfig()
        self.console = console or Console(stderr=True)
        self.events = events or EventBus(console=self.console, history_size=self.config.event_history_size)
        self.rollback_registry = rollback_registry if rollback_registry is not None else RollbackRegistry()

        self._units: dict[str, ReversibleUnit] = {}
        self._snapshots: dict[str, Snapshot] = {}
        # Units whose rollback ran successfully, even if a later attempt succeeded.
        self._rolled_back_ids: set[str] = set()
        self._history: deque[RollbackRecord] = deque(maxlen=self.config.max_history_size)
        self._abandoned: set[asyncio.Future] = set()

    def default_options(self) -> RollbackOptions:
        return RollbackOptions(max_attempts=self.config.max_attempts, timeout_ms=self.config.timeout_ms)

    # -------------------------------------------------------------------------
    # Timed calls
    # -------------------------------------------------------------------------

    def _forget(self, task: asyncio.Future) -> None:
        self._abandoned.discard(task)
        if not task.cancelled():
            task.exception()  # mark retrieved; the caller already moved on

    async def _run_with_timeout(self, fn: Callable[[], Any], timeout_ms: int) -> Any:
        task = asyncio.ensure_future(call_maybe_async(fn))
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        if task in done:
            return task.result()

        self._abandoned.add(task)
        task.add_done_callback(self._forget)
        raise ExecutionTimeout(f"Operation timeout after {timeout_ms} ms")

    async def _notify_error(self, on_error: Callable[[BaseException], Any] | None, error: BaseException) -> None:
        if on_error is None:
            return
        try:
            result = on_error(error)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            self.console.print(f"[yellow]Warning: on_error callback failed: {type(e).__name__}: {e}[/yellow]")

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_with_rollback(
        self,
        name: str,
        execute: Callable[[], Any],
        rollback: Callable[[], Any],
        *,
        metadata: dict[str, Any] | None = None,
        options: RollbackOptions | None = None,
    ) -> ExecutionResult:
        opts = options or self.default_options()
        unit = ReversibleUnit(
            id=new_ulid(),
            name=name,
            execute=execute,
            rollback=rollback,
            metadata=dict(metadata or {}),
        )
        self._units[unit.id] = unit

        last_error: BaseException | None = None
        for attempt in range(1, opts.max_attempts + 1):
            start_time = time.monotonic()
            try:
                result = await self._run_with_timeout(unit.execute, opts.timeout_ms)
            except Exception as e:
                last_error = e
                self.events.emit(
                    UNIT_ERRORED,
                    unit.id,
                    SOURCE,
                    unit=unit,
                    attempt=attempt,
                    error=e,
                    error_type=type(e).__name__,
                    message=_truncate(str(e)),
                    duration_ms=(time.monotonic() - start_time) * 1000,
                )
                await self._notify_error(opts.on_error, e)

                if attempt < opts.max_attempts:
                    await self.rollback_unit(
                        unit.id,
                        validate_before_rollback=opts.validate_before_rollback,
                        timeout_ms=opts.timeout_ms,
                    )
                continue

            # A success after an earlier rollback pass leaves the unit completed;
            # its rollback has already run and will not run again.
            unit.completed = True
            unit.rolled_back = False
            self.events.emit(
                UNIT_COMPLETED,
                unit.id,
                SOURCE,
                unit=unit,
                result=result,
                attempt=attempt,
                duration_ms=(time.monotonic() - start_time) * 1000,
            )
            return ExecutionResult(success=True, unit_id=unit.id, attempts=attempt, result=result)

        await self.rollback_unit(
            unit.id,
            validate_before_rollback=opts.validate_before_rollback,
            timeout_ms=opts.timeout_ms,
        )
        return ExecutionResult(
            success=False,
            unit_id=unit.id,
            attempts=opts.max_attempts,
            error=last_error or RuntimeError("Unknown error"),
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    def _add_record(self, record: RollbackRecord) -> None:
        # deque(maxlen) evicts the oldest record first.
        self._history.append(record)

    async def rollback_unit(
        self,
        unit_id: str,
        *,
        validate_before_rollback: SnapshotCheck | None = None,
        timeout_ms: int | None = None,
    ) -> bool:
        """One rollback pass. Never retried; a failure leaves the unit as it was."""
        unit = self._units.get(unit_id)
        if unit is None:
            self.console.print(f"[yellow]Warning: unit {unit_id} not found for rollback[/yellow]")
            return False
        if unit.rolled_back or unit_id in self._rolled_back_ids:
            self.console.print(f"[yellow]Warning: unit {unit_id} already rolled back[/yellow]")
            return False

        if validate_before_rollback is not None:
            snapshot = self._snapshots.get(unit_id)
            if snapshot is not None and not self._snapshot_allows(validate_before_rollback, snapshot):
                self.console.print(f"[yellow]Warning: rollback validation refused for unit {unit_id}[/yellow]")
                return False

        self.events.emit(ROLLBACK_STARTED, unit_id, SOURCE, unit=unit)
        try:
            await self._run_with_timeout(unit.rollback, timeout_ms or self.config.timeout_ms)
        except Exception as e:
            record = RollbackRecord(id=new_ulid(), unit_id=unit_id, unit_name=unit.name, success=False, error=e)
            self._add_record(record)
            self.events.emit(ROLLBACK_FAILED, unit_id, SOURCE, record=record)
            return False

        unit.completed = False
        unit.rolled_back = True
        self._rolled_back_ids.add(unit_id)
        self.rollback_registry.discard(unit_id)

        record = RollbackRecord(id=new_ulid(), unit_id=unit_id, unit_name=unit.name, success=True)
        self._add_record(record)
        self.events.emit(ROLLBACK_COMPLETED, unit_id, SOURCE, record=record)
        return True

    def _snapshot_allows(self, check: SnapshotCheck, snapshot: Snapshot) -> bool:
        try:
            return bool(check(snapshot))
        except Exception as e:
            self.console.print(f"[yellow]Warning: snapshot validation raised: {type(e).__name__}: {e}[/yellow]")
            return False

    async def rollback_units(
        self,
        unit_ids: list[str],
        options: RollbackOptions | None = None,
    ) -> RollbackBatchResult:
        """Roll back strictly last-to-first over the given list."""
        opts = options or self.default_options()
        results: list[RollbackOutcome] = []

        for unit_id in reversed(unit_ids):
            success = await self.rollback_unit(
                unit_id,
                validate_before_rollback=opts.validate_before_rollback,
                timeout_ms=opts.timeout_ms,
            )
            results.append(RollbackOutcome(unit_id=unit_id, success=success))
            if not success:
                await self._notify_error(opts.on_error, RuntimeError(f"Rollback failed for unit {unit_id}"))

        succeeded = sum(1 for r in results if r.success)
        return RollbackBatchResult(
            total=len(unit_ids),
            succeeded=succeeded,
            failed=len(unit_ids) - succeeded,
            results=results,
        )

    async def rollback_since(
        self,
        timestamp: datetime,
        options: RollbackOptions | None = None,
    ) -> RollbackBatchResult:
        timestamp = as_utc(timestamp)
        unit_ids = [
            unit.id
            for unit in list(self._units.values())
            if unit.created_at >= timestamp and unit.id not in self._rolled_back_ids
        ]
        return await self.rollback_units(unit_ids, options)

    def register_rollback(
        self,
        action_id: str,
        execute: Callable[[], Any],
        metadata: dict[str, Any] | None = None,
    ) -> RollbackProcedure:
        procedure = RollbackProcedure(action_id=action_id, execute=execute, metadata=dict(metadata or {}))
        self.rollback_registry.register(procedure)
        return procedure

    # -------------------------------------------------------------------------
    # Snapshots
    # -------------------------------------------------------------------------

    def create_snapshot(self, unit_id: str, before_state: Any) -> Snapshot:
        snapshot = Snapshot(unit_id=unit_id, before_state=before_state)
        self._snapshots[unit_id] = snapshot
        self.events.emit(SNAPSHOT_CREATED, unit_id, SOURCE, snapshot=snapshot)
        return snapshot

    def update_snapshot(self, unit_id: str, after_state: Any) -> bool:
        snapshot = self._snapshots.get(unit_id)
        if snapshot is None:
            return False
        snapshot.after_state = after_state
        self.events.emit(SNAPSHOT_UPDATED, unit_id, SOURCE, snapshot=snapshot)
        return True

    def get_snapshot(self, unit_id: str) -> Snapshot | None:
        return self._snapshots.get(unit_id)

    # -------------------------------------------------------------------------
    # Queries and maintenance
    # -------------------------------------------------------------------------

    def get_unit(self, unit_id: str) -> ReversibleUnit | None:
        return self._units.get(unit_id)

    def list_units(self) -> list[ReversibleUnit]:
        return list(self._units.values())

    def get_rollback_history(
        self,
        *,
        since: datetime | None = None,
        success_only: bool = False,
        unit_id: str | None = None,
    ) -> list[RollbackRecord]:
        filtered = list(self._history)
        if since is not None:
            since = as_utc(since)
            filtered = [r for r in filtered if r.created_at >= since]
        if success_only:
            filtered = [r for r in filtered if r.success]
        if unit_id is not None:
            filtered = [r for r in filtered if r.unit_id == unit_id]
        return filtered

    def get_reversibility_status(self) -> ReversibilityStatus:
        units = list(self._units.values())
        total_rollbacks = len(self._history)
        successful = sum(1 for r in self._history if r.success)
        rate = successful / total_rollbacks * 100 if total_rollbacks > 0 else 100.0

        return ReversibilityStatus(
            total_units=len(units),
            completed_units=sum(1 for u in units if u.completed and not u.rolled_back),
            rolled_back_units=sum(1 for u in units if u.rolled_back),
            pending_units=sum(1 for u in units if not u.completed and not u.rolled_back),
            total_rollbacks=total_rollbacks,
            successful_rollbacks=successful,
            failed_rollbacks=total_rollbacks - successful,
            rollback_success_rate=rate,
            has_snapshots=bool(self._snapshots),
        )

    def cleanup(self, older_than: datetime) -> int:
        """Drop terminal units (and their snapshots) created before the cutoff."""
        older_than = as_utc(older_than)
        cleaned = 0
        for unit_id, unit in list(self._units.items()):
            if unit.created_at < older_than and unit.terminal:
                del self._units[unit_id]
                self._rolled_back_ids.discard(unit_id)
                self._snapshots.pop(unit_id, None)
                cleaned += 1

        self.events.emit(CLEANUP_COMPLETED, new_ulid(), SOURCE, cleaned=cleaned, older_than=older_than)
        return cleaned
