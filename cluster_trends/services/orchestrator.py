"""
Reactive orchestrator for the collection -> aggregation -> forecast pipeline.

Turns a stream of filter mutations into a sequence of published snapshots.

State Machine:
    Idle -> Debouncing -> Collecting -> Aggregating -> Forecasting -> Published
    (any cycle failure -> Failed; the next mutation -> Debouncing)

Debounce:
    Every mutation restarts a `debounce_seconds` timer. Only the filter state
    present when the timer fires is collected, so intermediate states during
    rapid interaction never cost a request.

Generations (last-write-wins):
    Entering Collecting assigns the cycle the next generation number and makes
    it the current one. A filter mutation clears the current generation and a
    newer cycle replaces it. A cycle publishes only if its generation is still
    current when it completes. Stale cycles run to completion (requests are
    not aborted) but their results are dropped. The check and the publish
    happen with no await in between, so a stale cycle can never overwrite a
    snapshot produced by a newer one.

Concurrency:
    One event loop, one logical thread of control. Record collection and
    filter-option discovery for the same query run concurrently via
    asyncio.gather. Aggregation and forecasting are synchronous.

Failure Handling:
    Any exception raised inside a cycle is logged and recorded in
    `last_error`; the state becomes Failed and the previous snapshot stays
    published. Nothing propagates to the UI collaborator.

Usage:
    orchestrator = TrendOrchestrator(client, settings, scope=scope)
    unsubscribe = orchestrator.subscribe(lambda snapshot: render(snapshot))
    orchestrator.on_filter_change(FacetLevel.DISTRICT, ["Kasese"])
    ...
    await orchestrator.aclose()
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Set

from cluster_trends.core.config import Settings, get_settings
from cluster_trends.models.enums import FacetLevel, OrchestratorState
from cluster_trends.models.schemas import (
    CollectionResult,
    FilterOptions,
    ScopeConstraint,
    Snapshot,
)
from cluster_trends.services.aggregator import aggregate, summarize, summarize_records
from cluster_trends.services.collector import collect
from cluster_trends.services.filter_state import FilterState
from cluster_trends.services.forecaster import forecast


logger = logging.getLogger(__name__)


SnapshotCallback = Callable[[Snapshot], Any]

# States in which no cycle for the latest request is outstanding
SETTLED_STATES = frozenset({
    OrchestratorState.IDLE,
    OrchestratorState.PUBLISHED,
    OrchestratorState.FAILED,
})


class EvaluationsBackend(Protocol):
    """The read operations the orchestrator needs from the evaluations client."""

    async def fetch_evaluations(self, params: Dict[str, str]) -> Any:
        ...

    async def fetch_filter_options(self, params: Dict[str, str]) -> FilterOptions:
        ...


@dataclass
class CycleRequest:
    """Inputs frozen at the moment a cycle enters Collecting."""
    generation: int
    filters: FilterState
    query: Dict[str, str]


class TrendOrchestrator:
    """
    Debounced, generation-guarded driver of the trend pipeline.

    Args:
        client: Evaluations service client.
        settings: Debounce / collection settings (application settings by default).
        scope: Mandatory equality filter for a restricted caller. Enforced by
            the collector and used to seed the initial filter state.
        filter_state: Initial filter state; defaults to the scope-seeded state.
    """

    def __init__(
        self,
        client: EvaluationsBackend,
        settings: Optional[Settings] = None,
        scope: Optional[ScopeConstraint] = None,
        filter_state: Optional[FilterState] = None,
    ):
        self._client = client
        self._settings = settings or get_settings()
        self._scope = scope
        self._filters = filter_state.copy() if filter_state else FilterState.from_scope(scope)

        self._state = OrchestratorState.IDLE
        self._generation = 0
        self._current_generation: Optional[int] = None
        self._snapshot: Optional[Snapshot] = None
        self._last_error: Optional[str] = None

        self._subscribers: List[SnapshotCallback] = []
        self._debounce_task: Optional[asyncio.Task] = None
        self._cycle_tasks: Set[asyncio.Task] = set()

    # =========================================================================
    # Read-only properties
    # =========================================================================

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def snapshot(self) -> Optional[Snapshot]:
        """Most recently published snapshot, or None before the first publish."""
        return self._snapshot

    @property
    def generation(self) -> int:
        """Number of cycles started so far."""
        return self._generation

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    @property
    def scope(self) -> Optional[ScopeConstraint]:
        return self._scope

    @property
    def filter_state(self) -> FilterState:
        """A copy of the current filter state; mutate through on_filter_change()."""
        return self._filters.copy()

    def is_loading(self) -> bool:
        """True while a cycle for the latest filter state is pending or in flight."""
        return self._state not in SETTLED_STATES

    # =========================================================================
    # UI collaborator interface
    # =========================================================================

    def on_filter_change(self, level: FacetLevel, values: Optional[Iterable[Any]]) -> None:
        """
        Apply a facet selection (with cascade) and restart the debounce timer.

        Must be called from within the running event loop.

        Raises:
            ValueError: If `level` is not a known facet.
        """
        self._filters.set(level, values)
        logger.debug(f"Filter change at {FacetLevel(level).value}: {self._filters!r}")
        self._schedule()

    def clear_filters(self) -> None:
        """Reset to the session-start state (scope facet only) and restart the debounce timer."""
        self._filters = FilterState.from_scope(self._scope)
        self._schedule()

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """
        Register a callback for every published snapshot.

        Coroutine functions are awaited. Returns a function that removes the
        subscription.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def refresh(self) -> Optional[Snapshot]:
        """
        Run a cycle for the current filter state immediately, bypassing the debounce.

        Returns:
            The snapshot this cycle published, or None if it failed or was
            superseded before completing.
        """
        self._cancel_debounce()
        return await self._run_cycle(self._begin_cycle())

    async def wait_idle(self) -> None:
        """Wait until no debounce timer or cycle is outstanding."""
        while True:
            pending = [t for t in self._cycle_tasks if not t.done()]
            if self._debounce_task is not None and not self._debounce_task.done():
                pending.append(self._debounce_task)
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel the debounce timer and wait for in-flight cycles to finish."""
        self._cancel_debounce()
        if self._cycle_tasks:
            await asyncio.gather(*self._cycle_tasks, return_exceptions=True)
        self._subscribers.clear()

    # =========================================================================
    # Debounce
    # =========================================================================

    def _schedule(self) -> None:
        # Any in-flight cycle now answers an outdated filter state
        self._current_generation = None
        self._state = OrchestratorState.DEBOUNCING

        self._cancel_debounce()
        self._debounce_task = asyncio.get_running_loop().create_task(self._debounce())

    def _cancel_debounce(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _debounce(self) -> None:
        await asyncio.sleep(self._settings.debounce_seconds)
        # Cycle runs in its own task so a later mutation only cancels the timer
        task = asyncio.get_running_loop().create_task(self._run_cycle(self._begin_cycle()))
        self._cycle_tasks.add(task)
        task.add_done_callback(self._cycle_tasks.discard)
        self._debounce_task = None

    # =========================================================================
    # Cycle
    # =========================================================================

    def _begin_cycle(self) -> CycleRequest:
        self._generation += 1
        self._current_generation = self._generation
        self._state = OrchestratorState.COLLECTING
        self._last_error = None
        return CycleRequest(
            generation=self._generation,
            filters=self._filters.copy(),
            query=self._filters.to_query(),
        )

    def _is_current(self, generation: int) -> bool:
        return self._current_generation == generation

    def _transition(self, generation: int, state: OrchestratorState) -> None:
        if self._is_current(generation):
            self._state = state

    async def _fetch_filter_options(self, query: Dict[str, str]) -> Optional[FilterOptions]:
        params = dict(query)
        if self._scope is not None:
            params[self._scope.facet.value] = self._scope.value
        try:
            return await self._client.fetch_filter_options(params)
        except Exception as e:
            logger.warning(f"Filter option discovery failed; pickers keep previous options: {e}")
            return None

    async def _run_cycle(self, request: CycleRequest) -> Optional[Snapshot]:
        generation = request.generation
        logger.info(f"Cycle {generation} started for query {request.query}")

        try:
            collection, options = await asyncio.gather(
                collect(self._client, request.query, scope=self._scope, settings=self._settings),
                self._fetch_filter_options(request.query),
            )

            self._transition(generation, OrchestratorState.AGGREGATING)
            buckets = aggregate(collection.records)

            self._transition(generation, OrchestratorState.FORECASTING)
            trends = forecast(buckets)

            snapshot = self._build_snapshot(request, collection, buckets, trends, options)
        except Exception as e:
            logger.exception(f"Cycle {generation} failed")
            if self._is_current(generation):
                self._state = OrchestratorState.FAILED
                self._last_error = str(e) or e.__class__.__name__
            return None

        if not self._is_current(generation):
            logger.info(f"Cycle {generation} superseded; discarding its results")
            return None

        self._snapshot = snapshot
        self._state = OrchestratorState.PUBLISHED
        logger.info(
            f"Published generation {generation}: {snapshot.record_count} records, "
            f"{len(snapshot.buckets)} buckets, {len(snapshot.trends)} trends "
            f"({snapshot.collection_status.value})"
        )

        await self._notify(snapshot)
        return snapshot

    def _build_snapshot(
        self,
        request: CycleRequest,
        collection: CollectionResult,
        buckets,
        trends,
        options: Optional[FilterOptions],
    ) -> Snapshot:
        return Snapshot(
            generation=request.generation,
            filters=request.filters.as_dict(),
            query=request.query,
            buckets=buckets,
            trends=trends,
            summary=summarize(buckets),
            record_averages=summarize_records(collection.records),
            filter_options=options,
            collection_status=collection.status,
            incomplete_reason=collection.incomplete_reason,
            record_count=len(collection.records),
        )

    async def _notify(self, snapshot: Snapshot) -> None:
        for callback in list(self._subscribers):
            # A newer snapshot was published while an earlier callback was suspended
            if self._snapshot is not snapshot:
                logger.info(f"Generation {snapshot.generation} superseded during notification")
                return
            try:
                result = callback(snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(f"Snapshot subscriber {callback!r} raised")
