"""
Background rollup scheduling.

Hierarchy rollups over a large tree run on an executor so callers are not
blocked. Each submission gets a new generation number and cancels the
previous submission's token. When a rollup finishes, its result is
delivered only if its generation is still current and its token was not
cancelled; otherwise the result is discarded, never merged.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, TypeVar

from gaplens.analysis.hierarchy import RollupCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Cooperative cancellation flag. Calling the token reports cancellation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __call__(self) -> bool:
        return self.cancelled


@dataclass
class RollupTicket:
    """Handle on one submitted rollup."""

    generation: int
    token: CancellationToken
    future: Future[Any]

    @property
    def superseded(self) -> bool:
        return self.token.cancelled


class RollupScheduler:
    """
    Runs rollups in the background, keeping only the newest result.

    Example:
        scheduler = RollupScheduler()
        ticket = scheduler.submit(
            lambda token: rollup.build(tree, baselines, lookup, should_stop=token),
            on_result=lambda view: cache.put(key, view),
        )
        ...
        scheduler.supersede()   # a mutation landed; drop the running rollup
    """

    def __init__(self, executor: Executor | None = None) -> None:
        self._executor = executor
        self._owns_executor = executor is None
        self._lock = threading.Lock()
        self._generation = 0
        self._token: CancellationToken | None = None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def _get_executor(self) -> Executor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="gaplens-rollup")
        return self._executor

    def submit(
        self,
        compute: Callable[[CancellationToken], T],
        on_result: Callable[[T], None],
    ) -> RollupTicket:
        """
        Submit a rollup, superseding any running one.

        Args:
            compute: Builds the result, polling the token to stop early.
            on_result: Receives the result if it is still current.

        Returns:
            RollupTicket whose future resolves to the delivered result, or
            None when the rollup was cancelled or superseded.
        """
        with self._lock:
            if self._token is not None:
                self._token.cancel()
            self._generation += 1
            generation = self._generation
            token = CancellationToken()
            self._token = token

        def run() -> T | None:
            try:
                result = compute(token)
            except RollupCancelledError:
                logger.info("Rollup generation %d cancelled", generation)
                return None
            with self._lock:
                if token.cancelled or generation != self._generation:
                    logger.warning("Discarding superseded rollup generation %d", generation)
                    return None
                on_result(result)
            return result

        future = self._get_executor().submit(run)
        return RollupTicket(generation, token, future)

    def supersede(self) -> None:
        """Cancel the running rollup, if any."""
        with self._lock:
            if self._token is not None and not self._token.cancelled:
                self._token.cancel()
                logger.debug("Superseded rollup generation %d", self._generation)

    def shutdown(self, wait: bool = True) -> None:
        if self._owns_executor and self._executor is not None:
            self._executor.shutdown(wait=wait)
            self._executor = None
