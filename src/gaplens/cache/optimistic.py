"""
Optimistic writes with snapshot and rollback.

Every mutation runs through a small state machine:

    PENDING --apply--> APPLIED --commit--> COMMITTED
                          |
                          +----revert--> REVERTED

apply() snapshots the affected cache entries and installs speculative
values. commit() marks every affected key stale so dependents recompute
lazily, then stores any server-confirmed values. revert() restores the
snapshot exactly, leaving the cache as if the write never happened.

OptimisticCoordinator.execute() drives one write through the machine and
returns a WriteOutcome holding either the confirmed value or a revert
instruction with the error that caused it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from gaplens.cache.invalidation import InvalidationTable, Mutation, ViewKey
from gaplens.cache.store import CacheEntry, ViewCache
from gaplens.errors import EngineError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class WriteState(str, Enum):
    """Lifecycle of one optimistic write."""

    PENDING = "pending"
    APPLIED = "applied"
    COMMITTED = "committed"
    REVERTED = "reverted"


_TRANSITIONS: dict[WriteState, frozenset[WriteState]] = {
    WriteState.PENDING: frozenset({WriteState.APPLIED}),
    WriteState.APPLIED: frozenset({WriteState.COMMITTED, WriteState.REVERTED}),
    WriteState.COMMITTED: frozenset(),
    WriteState.REVERTED: frozenset(),
}


@dataclass(frozen=True)
class RevertInstruction:
    """
    What a reverted write undid.

    Attributes:
        mutation: The write that failed.
        restored_keys: Cache keys put back to their prior entries.
        reason: Error message of the failure.
        retryable: Whether retrying the same write may succeed.
    """

    mutation: Mutation
    restored_keys: frozenset[ViewKey]
    reason: str
    retryable: bool = False


@dataclass
class WriteOutcome(Generic[T]):
    """
    Result of one optimistic write.

    Attributes:
        state: COMMITTED or REVERTED.
        value: Server-confirmed value when committed.
        revert: Revert instruction when reverted.
        error: The error that caused the revert.
    """

    state: WriteState
    value: T | None = None
    revert: RevertInstruction | None = None
    error: EngineError | None = None

    @property
    def confirmed(self) -> bool:
        return self.state == WriteState.COMMITTED

    @property
    def retryable(self) -> bool:
        return self.revert is not None and self.revert.retryable


@dataclass
class OptimisticWrite:
    """
    State machine for one write against the view cache.

    Attributes:
        cache: View cache being updated.
        mutation: Write being performed.
        keys: Keys the write invalidates.
        speculative: Values to show while the write is in flight.
    """

    cache: ViewCache
    mutation: Mutation
    keys: frozenset[ViewKey]
    speculative: Mapping[ViewKey, Any] = field(default_factory=dict)
    state: WriteState = WriteState.PENDING
    _snapshot: dict[ViewKey, CacheEntry | None] = field(default_factory=dict, repr=False)

    def _transition(self, target: WriteState) -> None:
        if target not in _TRANSITIONS[self.state]:
            raise ValueError(f"Cannot move write from {self.state.value} to {target.value}")
        self.state = target

    def apply(self) -> None:
        """Snapshot affected entries and install speculative values."""
        self._transition(WriteState.APPLIED)
        self._snapshot = self.cache.snapshot(self.keys | set(self.speculative))
        for key, value in self.speculative.items():
            self.cache.put(key, value)

    def commit(self, confirmed: Mapping[ViewKey, Any] | None = None) -> int:
        """
        Mark affected views stale, then store server-confirmed values.

        Returns:
            The mutation tick.
        """
        self._transition(WriteState.COMMITTED)
        tick = self.cache.invalidate(self.keys)
        for key, value in (confirmed or {}).items():
            self.cache.put(key, value)
        self._snapshot = {}
        return tick

    def revert(self, error: Exception) -> RevertInstruction:
        """Restore the snapshot taken by apply()."""
        self._transition(WriteState.REVERTED)
        self.cache.restore(self._snapshot)
        restored = frozenset(self._snapshot)
        self._snapshot = {}
        return RevertInstruction(
            mutation=self.mutation,
            restored_keys=restored,
            reason=str(error),
            retryable=bool(getattr(error, "retryable", False)),
        )


class OptimisticCoordinator:
    """
    Runs writes optimistically against the view cache.

    Example:
        coordinator = OptimisticCoordinator(cache)
        outcome = coordinator.execute(mutation, lambda: repo.update_assessment(...))
        if not outcome.confirmed:
            print(outcome.error)
    """

    def __init__(self, cache: ViewCache, table: InvalidationTable | None = None) -> None:
        self.cache = cache
        self.table = table or InvalidationTable()

    def execute(
        self,
        mutation: Mutation,
        write: Callable[[], T],
        speculative: Mapping[ViewKey, Any] | None = None,
        confirm: Callable[[T], Mapping[ViewKey, Any]] | None = None,
    ) -> WriteOutcome[T]:
        """
        Perform one write.

        Args:
            mutation: Write description used to resolve affected keys.
            write: Performs the storage call and returns the confirmed value.
            speculative: Values to show until the write settles.
            confirm: Maps the confirmed value to cache entries to store.

        Returns:
            WriteOutcome. Engine errors are reported in the outcome after the
            snapshot is restored; any other exception is re-raised after the
            restore.
        """
        op = OptimisticWrite(
            cache=self.cache,
            mutation=mutation,
            keys=frozenset(self.table.keys_for(mutation)),
            speculative=dict(speculative or {}),
        )
        op.apply()
        try:
            result = write()
        except EngineError as e:
            instruction = op.revert(e)
            logger.warning(
                "Reverted %s on %s: %s",
                mutation.mutation_type.value,
                mutation.product_id,
                e,
            )
            return WriteOutcome(WriteState.REVERTED, revert=instruction, error=e)
        except Exception as e:
            op.revert(e)
            raise

        op.commit(confirm(result) if confirm else None)
        logger.info("Committed %s on %s", mutation.mutation_type.value, mutation.product_id)
        return WriteOutcome(WriteState.COMMITTED, value=result)
