"""
Tests for view caching, optimistic writes, autosave and background rollups.

Uses Python's unittest module. Time-dependent behaviour is driven with
ManualClock and a deferred executor instead of sleeping.
"""

from __future__ import annotations

import unittest
from collections.abc import Callable
from concurrent.futures import Executor, Future
from typing import Any

from gaplens.analysis.hierarchy import RollupCancelledError
from gaplens.cache.autosave import AutoSaver, Debouncer, ManualClock
from gaplens.cache.invalidation import (
    InvalidationTable,
    Mutation,
    MutationType,
    Scope,
    View,
    ViewKey,
)
from gaplens.cache.optimistic import (
    OptimisticCoordinator,
    OptimisticWrite,
    WriteOutcome,
    WriteState,
)
from gaplens.cache.store import ViewCache
from gaplens.cache.tasks import CancellationToken, RollupScheduler
from gaplens.errors import ConflictingWriteError, TransientIOError


class DeferredExecutor(Executor):
    """Executor that queues work until run_all() is called."""

    def __init__(self) -> None:
        self.queue: list[tuple[Future, Callable[..., Any], tuple, dict]] = []

    def submit(self, fn, /, *args, **kwargs) -> Future:
        future: Future = Future()
        self.queue.append((future, fn, args, kwargs))
        return future

    def run_all(self) -> None:
        while self.queue:
            future, fn, args, kwargs = self.queue.pop(0)
            future.set_result(fn(*args, **kwargs))


def _assessment_mutation(system_id: str = "sys-1") -> Mutation:
    return Mutation(
        MutationType.ASSESSMENT_UPDATED,
        "prod-1",
        framework_id="fw-1",
        centre_id="cc-1",
        system_ids=(system_id,),
    )


class TestInvalidationTable(unittest.TestCase):
    """Tests for InvalidationTable."""

    def setUp(self) -> None:
        self.table = InvalidationTable()

    def test_assessment_update_keys(self) -> None:
        """Test assessment update keys."""
        keys = self.table.keys_for(_assessment_mutation())

        self.assertIn(ViewKey.product(View.MATRIX, "prod-1"), keys)
        self.assertIn(ViewKey.product(View.GAP_ANALYSIS, "prod-1"), keys)
        self.assertIn(ViewKey(View.FUNCTION_COMPLIANCE), keys)
        self.assertIn(ViewKey.system(View.SYSTEM_SCORE, "sys-1"), keys)
        self.assertIn(ViewKey(View.HIERARCHY), keys)
        self.assertIn(ViewKey(View.FRAMEWORK_SUMMARY), keys)
        self.assertIn(ViewKey(View.ATTENTION), keys)
        # Only the organisation-wide rollup is cached
        self.assertFalse(any(k.view == View.HIERARCHY and k.scope_id for k in keys))

    def test_siblings_untouched(self) -> None:
        """Test siblings untouched."""
        keys = self.table.keys_for(_assessment_mutation("sys-1"))

        self.assertNotIn(ViewKey.system(View.SYSTEM_SCORE, "sys-2"), keys)
        self.assertNotIn(ViewKey.product(View.MATRIX, "prod-2"), keys)
        self.assertNotIn(ViewKey.product(View.BASELINE, "prod-1"), keys)
        self.assertNotIn(ViewKey.product(View.SYSTEMS, "prod-1"), keys)

    def test_system_and_baseline_mutations(self) -> None:
        """Test system and baseline mutations."""
        system_keys = self.table.keys_for(
            Mutation(MutationType.SYSTEM_CREATED, "prod-1", system_ids=("sys-9",))
        )
        baseline_keys = self.table.keys_for(
            Mutation(MutationType.BASELINE_CHANGED, "prod-1", system_ids=("sys-1", "sys-2"))
        )

        self.assertIn(ViewKey.product(View.SYSTEMS, "prod-1"), system_keys)
        self.assertIn(ViewKey.product(View.BASELINE, "prod-1"), baseline_keys)
        self.assertIn(ViewKey.system(View.SYSTEM_SCORE, "sys-2"), baseline_keys)

    def test_custom_mapping_resolves_ancestors(self) -> None:
        """Test a custom mapping resolves framework and centre scopes."""
        table = InvalidationTable(
            {
                MutationType.ASSESSMENT_UPDATED: (
                    (View.HIERARCHY, Scope.FRAMEWORK),
                    (View.HIERARCHY, Scope.CENTRE),
                )
            }
        )

        self.assertEqual(
            table.keys_for(Mutation(MutationType.ASSESSMENT_UPDATED, "prod-1")), set()
        )
        self.assertEqual(
            table.keys_for(_assessment_mutation()),
            {
                ViewKey(View.HIERARCHY, Scope.FRAMEWORK, "fw-1"),
                ViewKey(View.HIERARCHY, Scope.CENTRE, "cc-1"),
            },
        )

    def test_key_str(self) -> None:
        """Test key str."""
        self.assertEqual(str(ViewKey(View.HIERARCHY)), "hierarchy")
        self.assertEqual(
            str(ViewKey.product(View.MATRIX, "p")), "matrix(product=p)"
        )


class TestViewCache(unittest.TestCase):
    """Tests for ViewCache."""

    def setUp(self) -> None:
        self.cache = ViewCache()
        self.key = ViewKey.product(View.MATRIX, "prod-1")

    def test_get_or_compute_caches(self) -> None:
        """Test get or compute caches."""
        calls = []

        def compute() -> str:
            calls.append(1)
            return "matrix"

        self.assertEqual(self.cache.get_or_compute(self.key, compute), "matrix")
        self.assertEqual(self.cache.get_or_compute(self.key, compute), "matrix")
        self.assertEqual(len(calls), 1)

    def test_invalidate_marks_stale(self) -> None:
        """Test invalidate marks stale."""
        self.cache.put(self.key, "old")
        self.assertFalse(self.cache.is_stale(self.key))

        tick = self.cache.invalidate([self.key])

        self.assertTrue(self.cache.is_stale(self.key))
        self.assertIsNone(self.cache.get(self.key))
        self.assertEqual(self.cache.peek(self.key).value, "old")
        self.assertEqual(self.cache.last_mutation(self.key), tick)

    def test_value_computed_during_mutation_is_stale(self) -> None:
        """Test value computed during mutation is stale."""
        def compute() -> str:
            self.cache.invalidate([self.key])
            return "computed before the mutation"

        self.cache.get_or_compute(self.key, compute)

        self.assertIn(self.key, self.cache)
        self.assertTrue(self.cache.is_stale(self.key))

    def test_other_keys_stay_fresh(self) -> None:
        """Test other keys stay fresh."""
        other = ViewKey.system(View.SYSTEM_SCORE, "sys-2")
        self.cache.put(other, 75)
        self.cache.invalidate([self.key])
        self.assertEqual(self.cache.get(other), 75)

    def test_snapshot_restore(self) -> None:
        """Test snapshot restore."""
        missing = ViewKey(View.HIERARCHY)
        self.cache.put(self.key, "before")
        snapshot = self.cache.snapshot([self.key, missing])

        self.cache.put(self.key, "after")
        self.cache.put(missing, "new")
        self.cache.restore(snapshot)

        self.assertEqual(self.cache.get(self.key), "before")
        self.assertNotIn(missing, self.cache)

    def test_clear(self) -> None:
        """Test clear."""
        self.cache.put(self.key, "x")
        self.cache.clear()
        self.assertEqual(len(self.cache), 0)


class TestOptimisticWrites(unittest.TestCase):
    """Tests for OptimisticWrite and OptimisticCoordinator."""

    def setUp(self) -> None:
        self.cache = ViewCache()
        self.coordinator = OptimisticCoordinator(self.cache)
        self.matrix_key = ViewKey.product(View.MATRIX, "prod-1")
        self.score_key = ViewKey.system(View.SYSTEM_SCORE, "sys-1")
        self.cache.put(self.matrix_key, "matrix v1")
        self.cache.put(self.score_key, 50)

    def test_commit_invalidates_and_stores_confirmed(self) -> None:
        """Test commit invalidates and stores confirmed."""
        seen = []

        def write() -> str:
            seen.append(self.cache.get(self.matrix_key))
            return "confirmed"

        outcome = self.coordinator.execute(
            _assessment_mutation(),
            write,
            speculative={self.matrix_key: "matrix speculative"},
            confirm=lambda value: {self.matrix_key: f"matrix {value}"},
        )

        self.assertTrue(outcome.confirmed)
        self.assertEqual(outcome.value, "confirmed")
        self.assertEqual(seen, ["matrix speculative"])
        self.assertEqual(self.cache.get(self.matrix_key), "matrix confirmed")
        self.assertTrue(self.cache.is_stale(self.score_key))

    def test_engine_error_reverts(self) -> None:
        """Test engine error reverts."""
        def write() -> None:
            raise TransientIOError("connection reset", "PUT /api/assessments/a1")

        outcome = self.coordinator.execute(
            _assessment_mutation(),
            write,
            speculative={self.matrix_key: "matrix speculative"},
        )

        self.assertEqual(outcome.state, WriteState.REVERTED)
        self.assertFalse(outcome.confirmed)
        self.assertTrue(outcome.retryable)
        self.assertIsInstance(outcome.error, TransientIOError)
        self.assertIn(self.matrix_key, outcome.revert.restored_keys)
        self.assertEqual(self.cache.get(self.matrix_key), "matrix v1")
        self.assertEqual(self.cache.get(self.score_key), 50)

    def test_conflict_is_not_retryable(self) -> None:
        """Test conflict is not retryable."""
        def write() -> None:
            raise ConflictingWriteError("a1", expected=1, actual=2)

        outcome = self.coordinator.execute(_assessment_mutation(), write)

        self.assertFalse(outcome.retryable)
        self.assertIn("Conflicting write", outcome.revert.reason)

    def test_unexpected_error_reverts_and_raises(self) -> None:
        """Test unexpected error reverts and raises."""
        def write() -> None:
            raise KeyError("boom")

        with self.assertRaises(KeyError):
            self.coordinator.execute(
                _assessment_mutation(),
                write,
                speculative={self.matrix_key: "matrix speculative"},
            )

        self.assertEqual(self.cache.get(self.matrix_key), "matrix v1")

    def test_invalid_transitions(self) -> None:
        """Test invalid transitions."""
        op = OptimisticWrite(self.cache, _assessment_mutation(), frozenset({self.matrix_key}))
        with self.assertRaises(ValueError):
            op.commit()
        op.apply()
        op.commit()
        with self.assertRaises(ValueError):
            op.revert(RuntimeError("late"))


def _confirmed(*_: Any) -> WriteOutcome[str]:
    return WriteOutcome(WriteState.COMMITTED, value="ok")


class TestDebouncer(unittest.TestCase):
    """Tests for Debouncer."""

    def setUp(self) -> None:
        self.clock = ManualClock()
        self.debouncer = Debouncer(quiet_period=3.0, clock=self.clock)

    def test_runs_after_quiet_period(self) -> None:
        """Test runs after quiet period."""
        self.debouncer.schedule("k", lambda: "done")

        self.clock.advance(2)
        self.assertEqual(self.debouncer.poll(), [])
        self.clock.advance(1)
        self.assertEqual(self.debouncer.poll(), ["done"])
        self.assertFalse(self.debouncer.is_pending("k"))

    def test_reschedule_supersedes(self) -> None:
        """Test reschedule supersedes."""
        first = self.debouncer.schedule("k", lambda: "first")
        self.clock.advance(2)
        self.debouncer.schedule("k", lambda: "second")

        self.clock.advance(2)
        self.assertEqual(self.debouncer.poll(), [])
        self.clock.advance(1)
        self.assertEqual(self.debouncer.poll(), ["second"])
        self.assertTrue(first.cancelled)

    def test_flush_and_cancel(self) -> None:
        """Test flush and cancel."""
        self.debouncer.schedule("a", lambda: "a")
        self.debouncer.schedule("b", lambda: "b")

        self.assertTrue(self.debouncer.cancel("a"))
        self.assertFalse(self.debouncer.cancel("a"))
        self.assertEqual(self.debouncer.flush(), ["b"])
        self.assertEqual(self.debouncer.pending_keys, [])

    def test_negative_quiet_period(self) -> None:
        """Test negative quiet period."""
        with self.assertRaises(ValueError):
            Debouncer(quiet_period=-1)
        with self.assertRaises(ValueError):
            self.clock.advance(-1)


class TestAutoSaver(unittest.TestCase):
    """Tests for AutoSaver."""

    def setUp(self) -> None:
        self.clock = ManualClock()
        self.calls: list[tuple[str, str, dict[str, Any]]] = []
        self.fail = False

        def save(system_id: str, control_id: str, patch: dict[str, Any]) -> WriteOutcome[str]:
            self.calls.append((system_id, control_id, patch))
            if self.fail:
                return WriteOutcome(
                    WriteState.REVERTED, error=TransientIOError("backend down")
                )
            return _confirmed()

        self.saver = AutoSaver(save, quiet_period=3.0, clock=self.clock)

    def test_edits_coalesce_into_one_write(self) -> None:
        """Test edits coalesce into one write."""
        self.saver.edit("sys-1", "pr.aa-01", {"status": "Partially Implemented"})
        self.clock.advance(1)
        self.saver.edit("sys-1", "PR.AA-01", {"status": "Implemented", "notes": "done"})

        self.clock.advance(2.5)
        self.assertEqual(self.saver.poll(), [])
        self.clock.advance(0.5)
        results = self.saver.poll()

        self.assertEqual(len(results), 1)
        self.assertTrue(results[0].saved)
        self.assertEqual(
            self.calls, [("sys-1", "PR.AA-01", {"status": "Implemented", "notes": "done"})]
        )
        self.assertEqual(self.saver.dirty_pairs, [])

    def test_pairs_are_independent(self) -> None:
        """Test pairs are independent."""
        self.saver.edit("sys-1", "PR.AA-01", {"status": "Implemented"})
        self.clock.advance(2)
        self.saver.edit("sys-2", "PR.AA-01", {"status": "Not Implemented"})
        self.clock.advance(1)

        results = self.saver.poll()

        self.assertEqual([r.system_id for r in results], ["sys-1"])
        self.assertEqual(self.saver.dirty_pairs, [("sys-2", "PR.AA-01")])

    def test_manual_save_flushes_immediately(self) -> None:
        """Test manual save flushes immediately."""
        self.saver.edit("sys-1", "PR.AA-01", {"status": "Implemented"})
        self.saver.edit("sys-2", "GV.OC-01", {"notes": "x"})

        results = self.saver.save_now("sys-1", "PR.AA-01")

        self.assertEqual(len(results), 1)
        self.assertEqual(self.saver.dirty_pairs, [("sys-2", "GV.OC-01")])
        self.clock.advance(5)
        self.assertEqual([r.system_id for r in self.saver.poll()], ["sys-2"])
        self.assertEqual(len(self.calls), 2)

    def test_failed_write_keeps_edit_pending(self) -> None:
        """Test failed write keeps edit pending."""
        self.fail = True
        self.saver.edit("sys-1", "PR.AA-01", {"status": "Implemented"})
        self.clock.advance(3)

        results = self.saver.poll()

        self.assertFalse(results[0].saved)
        self.assertEqual(self.saver.pending_patch("sys-1", "PR.AA-01"), {"status": "Implemented"})
        self.assertIn("backend down", self.saver.errors[("sys-1", "PR.AA-01")])

        self.fail = False
        self.saver.edit("sys-1", "PR.AA-01", {"notes": "retry"})
        retried = self.saver.save_now()

        self.assertTrue(retried[0].saved)
        self.assertEqual(self.calls[-1][2], {"status": "Implemented", "notes": "retry"})
        self.assertEqual(self.saver.errors, {})

    def test_save_now_without_edits(self) -> None:
        """Test save now without edits."""
        self.assertEqual(self.saver.save_now("sys-1", "PR.AA-01"), [])
        self.assertEqual(self.saver.save_now(), [])


class TestRollupScheduler(unittest.TestCase):
    """Tests for RollupScheduler."""

    def setUp(self) -> None:
        self.executor = DeferredExecutor()
        self.scheduler = RollupScheduler(self.executor)
        self.delivered: list[str] = []

    def test_delivers_current_result(self) -> None:
        """Test delivers current result."""
        ticket = self.scheduler.submit(lambda token: "view", self.delivered.append)
        self.executor.run_all()

        self.assertEqual(ticket.future.result(), "view")
        self.assertEqual(self.delivered, ["view"])
        self.assertEqual(ticket.generation, 1)

    def test_superseded_result_discarded(self) -> None:
        """Test superseded result discarded."""
        first = self.scheduler.submit(lambda token: "old", self.delivered.append)
        second = self.scheduler.submit(lambda token: "new", self.delivered.append)
        self.executor.run_all()

        self.assertTrue(first.superseded)
        self.assertIsNone(first.future.result())
        self.assertEqual(second.future.result(), "new")
        self.assertEqual(self.delivered, ["new"])

    def test_supersede_cancels_running(self) -> None:
        """Test supersede cancels running."""
        def compute(token: CancellationToken) -> str:
            if token():
                raise RollupCancelledError("stopped")
            return "view"

        ticket = self.scheduler.submit(compute, self.delivered.append)
        self.scheduler.supersede()
        self.executor.run_all()

        self.assertIsNone(ticket.future.result())
        self.assertEqual(self.delivered, [])

    def test_result_after_supersede_without_polling(self) -> None:
        """Test result after supersede without polling."""
        ticket = self.scheduler.submit(lambda token: "view", self.delivered.append)
        self.scheduler.supersede()
        self.executor.run_all()

        self.assertIsNone(ticket.future.result())
        self.assertEqual(self.delivered, [])

    def test_default_executor(self) -> None:
        """Test default executor."""
        scheduler = RollupScheduler()
        try:
            ticket = scheduler.submit(lambda token: 42, self.delivered.append)
            self.assertEqual(ticket.future.result(timeout=5), 42)
        finally:
            scheduler.shutdown()


if __name__ == "__main__":
    unittest.main()
