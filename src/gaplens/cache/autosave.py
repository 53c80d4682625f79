"""
Debounced autosave of matrix edits.

Rapid edits to the same (system, control) pair are merged into one pending
patch and written once the pair has been quiet for the configured period
(3 seconds by default). A manual save flushes immediately and cancels the
pending timer. Time comes from an injected clock, and due work runs only
when poll() is called, so tests drive it with ManualClock instead of
sleeping.

A write that fails keeps its patch pending (merged under any newer edits)
so the edit is not lost; it is written again by the next edit's timer or
by a manual save.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Protocol

from gaplens.cache.optimistic import WriteOutcome

logger = logging.getLogger(__name__)

DEFAULT_QUIET_PERIOD = 3.0

PairKey = tuple[str, str]


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    """Wall-clock time source."""

    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Time source advanced explicitly."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        self._now += seconds


@dataclass
class ScheduledTask:
    """A keyed action waiting for its due time."""

    key: Any
    due: float
    action: Callable[[], Any]
    cancelled: bool = False


class Debouncer:
    """
    Keyed cancellable tasks with a quiet period.

    Scheduling a key that already has a pending task cancels the old one,
    so only the latest action per key ever runs.
    """

    def __init__(self, quiet_period: float = DEFAULT_QUIET_PERIOD, clock: Clock | None = None) -> None:
        if quiet_period < 0:
            raise ValueError("Quiet period cannot be negative")
        self.quiet_period = quiet_period
        self.clock = clock or MonotonicClock()
        self._tasks: dict[Any, ScheduledTask] = {}

    def schedule(self, key: Any, action: Callable[[], Any]) -> ScheduledTask:
        """Schedule action for key after the quiet period, superseding any pending task."""
        previous = self._tasks.get(key)
        if previous is not None:
            previous.cancelled = True
        task = ScheduledTask(key, self.clock.now() + self.quiet_period, action)
        self._tasks[key] = task
        return task

    def cancel(self, key: Any) -> bool:
        task = self._tasks.pop(key, None)
        if task is None:
            return False
        task.cancelled = True
        return True

    def is_pending(self, key: Any) -> bool:
        return key in self._tasks

    @property
    def pending_keys(self) -> list[Any]:
        return list(self._tasks)

    def poll(self) -> list[Any]:
        """Run every task that is due, oldest due first. Returns their results."""
        now = self.clock.now()
        due = sorted(
            (task for task in self._tasks.values() if task.due <= now),
            key=lambda t: t.due,
        )
        return [self._run(task) for task in due]

    def flush(self, key: Any | None = None) -> list[Any]:
        """Run pending tasks now: one key, or all when key is None."""
        if key is not None:
            task = self._tasks.get(key)
            return [self._run(task)] if task is not None else []
        return [self._run(task) for task in sorted(self._tasks.values(), key=lambda t: t.due)]

    def _run(self, task: ScheduledTask) -> Any:
        if self._tasks.get(task.key) is task:
            del self._tasks[task.key]
        task.cancelled = True
        return task.action()


SaveFunction = Callable[[str, str, dict[str, Any]], WriteOutcome[Any]]


@dataclass
class SaveResult:
    """Outcome of writing one pair's pending patch."""

    system_id: str
    control_id: str
    patch: dict[str, Any]
    outcome: WriteOutcome[Any]

    @property
    def saved(self) -> bool:
        return self.outcome.confirmed


@dataclass
class AutoSaver:
    """
    Coalesces edits per (system, control) and writes them after a quiet period.

    Example:
        saver = AutoSaver(engine.save_assessment, quiet_period=3.0, clock=clock)
        saver.edit("sys-1", "PR.AA-01", {"status": "Implemented"})
        saver.edit("sys-1", "PR.AA-01", {"notes": "MFA enforced"})
        clock.advance(3)
        saver.poll()   # one write with both fields
    """

    save: SaveFunction
    quiet_period: float = DEFAULT_QUIET_PERIOD
    clock: Clock | None = None
    _pending: dict[PairKey, dict[str, Any]] = field(default_factory=dict, init=False)
    _debouncer: Debouncer = field(init=False)
    errors: dict[PairKey, str] = field(default_factory=dict, init=False)

    def __post_init__(self) -> None:
        self._debouncer = Debouncer(self.quiet_period, self.clock)

    @property
    def dirty_pairs(self) -> list[PairKey]:
        """Pairs with edits not yet written."""
        return list(self._pending)

    def pending_patch(self, system_id: str, control_id: str) -> dict[str, Any] | None:
        patch = self._pending.get((system_id, control_id.upper()))
        return dict(patch) if patch is not None else None

    def edit(self, system_id: str, control_id: str, patch: dict[str, Any]) -> None:
        """Record an edit and restart the pair's quiet period."""
        pair = (system_id, control_id.upper())
        self._pending.setdefault(pair, {}).update(patch)
        self._debouncer.schedule(pair, lambda: self._write(pair))

    def poll(self) -> list[SaveResult]:
        """Write every pair whose quiet period has elapsed."""
        return [r for r in self._debouncer.poll() if r is not None]

    def save_now(self, system_id: str | None = None, control_id: str | None = None) -> list[SaveResult]:
        """
        Manual save: write pending edits immediately.

        With a pair, only that pair is written; otherwise every dirty pair,
        including ones left pending by an earlier failure.
        """
        if system_id is not None and control_id is not None:
            pair = (system_id, control_id.upper())
            self._debouncer.cancel(pair)
            result = self._write(pair)
            return [result] if result is not None else []

        results = []
        for pair in list(self._pending):
            self._debouncer.cancel(pair)
            result = self._write(pair)
            if result is not None:
                results.append(result)
        return results

    def _write(self, pair: PairKey) -> SaveResult | None:
        patch = self._pending.pop(pair, None)
        if not patch:
            return None

        outcome = self.save(pair[0], pair[1], dict(patch))
        if outcome.confirmed:
            self.errors.pop(pair, None)
            logger.debug("Autosaved %s/%s", pair[0], pair[1])
        else:
            # Newer edits made while the write was in flight take precedence.
            self._pending[pair] = {**patch, **self._pending.get(pair, {})}
            self.errors[pair] = str(outcome.error)
            logger.warning(
                "Autosave failed for %s/%s, keeping edit pending: %s",
                pair[0],
                pair[1],
                outcome.error,
            )
        return SaveResult(pair[0], pair[1], patch, outcome)
