"""
Caching and write coordination for computed views.

This module provides:
    - InvalidationTable: fixed map from mutation type to stale views
    - ViewCache: cached views with a logical staleness clock
    - OptimisticCoordinator: snapshot/apply/commit-or-revert writes
    - AutoSaver: debounced per-pair autosave with manual flush
    - RollupScheduler: background rollups that discard superseded results
"""

from gaplens.cache.autosave import (
    DEFAULT_QUIET_PERIOD,
    AutoSaver,
    Debouncer,
    ManualClock,
    MonotonicClock,
    SaveResult,
    ScheduledTask,
)
from gaplens.cache.invalidation import (
    INVALIDATION_MAP,
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
    RevertInstruction,
    WriteOutcome,
    WriteState,
)
from gaplens.cache.store import CacheEntry, ViewCache
from gaplens.cache.tasks import CancellationToken, RollupScheduler, RollupTicket

__all__ = [
    # Invalidation
    "INVALIDATION_MAP",
    "InvalidationTable",
    "Mutation",
    "MutationType",
    "Scope",
    "View",
    "ViewKey",
    # Store
    "ViewCache",
    "CacheEntry",
    # Optimistic writes
    "OptimisticCoordinator",
    "OptimisticWrite",
    "RevertInstruction",
    "WriteOutcome",
    "WriteState",
    # Autosave
    "AutoSaver",
    "Debouncer",
    "ScheduledTask",
    "SaveResult",
    "ManualClock",
    "MonotonicClock",
    "DEFAULT_QUIET_PERIOD",
    # Background rollups
    "RollupScheduler",
    "RollupTicket",
    "CancellationToken",
]
