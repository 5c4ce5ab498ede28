"""
Tests for the debounced, generation-guarded trend orchestrator.

Uses FakeEvaluationsService (conftest) with per-region gates so each test
controls when a cycle's collection completes relative to filter changes.

Covers:
1. Debounce: rapid changes collapse into one cycle for the final state
2. Last-write-wins: stale cycles never publish, in either completion order
3. Failure: previous snapshot retained, state failed, error recorded
4. Filter options fetched concurrently; their failure is not fatal
5. Subscribers, loading flag and scope handling
"""

import asyncio
from typing import Callable, List

import pytest

from cluster_trends.clients.evaluations import TransportError
from cluster_trends.models.enums import FacetLevel, OrchestratorState
from cluster_trends.models.schemas import ScopeConstraint, Snapshot
from cluster_trends.services.forecaster import OVERALL_SERIES
from cluster_trends.services.orchestrator import TrendOrchestrator


pytestmark = pytest.mark.asyncio


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll `predicate` on the event loop until it holds or `timeout` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def orchestrator(fake_service, test_settings) -> TrendOrchestrator:
    return TrendOrchestrator(fake_service, settings=test_settings)


@pytest.fixture
def published(orchestrator) -> List[Snapshot]:
    snapshots: List[Snapshot] = []
    orchestrator.subscribe(snapshots.append)
    return snapshots


class TestDebounce:

    async def test_rapid_changes_collapse_into_one_cycle(self, orchestrator, fake_service, published) -> None:
        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        orchestrator.on_filter_change(FacetLevel.CLUSTER, ['Bwera'])

        await orchestrator.wait_idle()

        assert orchestrator.generation == 1
        assert fake_service.evaluation_calls == [{'region': 'Western', 'cluster': 'Bwera'}]
        assert len(published) == 1
        assert published[0].query == {'region': 'Western', 'cluster': 'Bwera'}

    async def test_change_enters_debouncing_and_is_loading(self, orchestrator) -> None:
        assert orchestrator.state == OrchestratorState.IDLE
        assert not orchestrator.is_loading()

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])

        assert orchestrator.state == OrchestratorState.DEBOUNCING
        assert orchestrator.is_loading()

        await orchestrator.wait_idle()

        assert orchestrator.state == OrchestratorState.PUBLISHED
        assert not orchestrator.is_loading()

    async def test_clear_filters_is_debounced(self, orchestrator, fake_service) -> None:
        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        orchestrator.clear_filters()

        await orchestrator.wait_idle()

        assert fake_service.evaluation_calls == [{}]
        assert orchestrator.snapshot.record_count == 8


class TestGenerations:

    async def test_older_cycle_finishing_last_is_discarded(self, orchestrator, fake_service, published) -> None:
        fake_service.gates['Western'] = asyncio.Event()

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await wait_until(lambda: orchestrator.generation == 1)

        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        await wait_until(lambda: orchestrator.snapshot is not None)

        fake_service.gates['Western'].set()
        await orchestrator.wait_idle()

        assert orchestrator.generation == 2
        assert orchestrator.snapshot.generation == 2
        assert orchestrator.snapshot.query == {'region': 'Eastern'}
        assert {b.region for b in orchestrator.snapshot.buckets} == {'Eastern'}
        assert [s.generation for s in published] == [2]
        assert orchestrator.state == OrchestratorState.PUBLISHED

    async def test_stale_cycle_finishing_first_does_not_publish(self, orchestrator, fake_service, published) -> None:
        fake_service.gates['Western'] = asyncio.Event()
        fake_service.gates['Eastern'] = asyncio.Event()

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await wait_until(lambda: orchestrator.generation == 1)
        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        await wait_until(lambda: orchestrator.generation == 2)

        fake_service.gates['Western'].set()
        await asyncio.sleep(0.05)

        assert orchestrator.snapshot is None
        assert published == []
        assert orchestrator.state == OrchestratorState.COLLECTING

        fake_service.gates['Eastern'].set()
        await orchestrator.wait_idle()

        assert [s.generation for s in published] == [2]
        assert orchestrator.snapshot.query == {'region': 'Eastern'}

    async def test_change_during_collection_leaves_no_publish_until_next_cycle(
        self, orchestrator, fake_service, published
    ) -> None:
        fake_service.gates['Western'] = asyncio.Event()

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await wait_until(lambda: orchestrator.generation == 1)

        # The mutation alone makes generation 1 stale
        orchestrator.on_filter_change(FacetLevel.DISTRICT, ['Kasese'])
        fake_service.gates['Western'].set()
        await wait_until(lambda: len(fake_service.evaluation_calls) == 2)
        await orchestrator.wait_idle()

        assert [s.generation for s in published] == [2]
        assert published[0].query == {'region': 'Western', 'district': 'Kasese'}

    async def test_suspended_subscriber_cannot_deliver_older_snapshot_after_newer(
        self, orchestrator, fake_service
    ) -> None:
        render_gate = asyncio.Event()
        first_seen: List[int] = []
        second_seen: List[int] = []

        async def slow_renderer(snapshot: Snapshot) -> None:
            first_seen.append(snapshot.generation)
            if snapshot.generation == 1:
                await render_gate.wait()

        orchestrator.subscribe(slow_renderer)
        orchestrator.subscribe(lambda s: second_seen.append(s.generation))

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await wait_until(lambda: first_seen == [1])

        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        await wait_until(lambda: second_seen == [2])

        render_gate.set()
        await orchestrator.wait_idle()

        assert orchestrator.snapshot.generation == 2
        assert first_seen == [1, 2]
        assert second_seen == [2]

    async def test_generations_increase_monotonically(self, orchestrator) -> None:
        first = await orchestrator.refresh()
        second = await orchestrator.refresh()

        assert (first.generation, second.generation) == (1, 2)
        assert orchestrator.snapshot is second


class TestFailures:

    async def test_failure_keeps_previous_snapshot(self, orchestrator, fake_service) -> None:
        previous = await orchestrator.refresh()

        fake_service.evaluation_error = TransportError('connection refused')
        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        await orchestrator.wait_idle()

        assert orchestrator.state == OrchestratorState.FAILED
        assert orchestrator.snapshot is previous
        assert 'connection refused' in orchestrator.last_error
        assert not orchestrator.is_loading()

    async def test_recovery_after_failure_clears_error(self, orchestrator, fake_service) -> None:
        fake_service.evaluation_error = TransportError('timed out')
        assert await orchestrator.refresh() is None
        assert orchestrator.state == OrchestratorState.FAILED

        fake_service.evaluation_error = None
        snapshot = await orchestrator.refresh()

        assert snapshot is not None
        assert orchestrator.last_error is None
        assert orchestrator.state == OrchestratorState.PUBLISHED

    async def test_filter_options_failure_is_not_fatal(self, orchestrator, fake_service) -> None:
        fake_service.option_error = TransportError('502 Bad Gateway', status_code=502)

        snapshot = await orchestrator.refresh()

        assert snapshot is not None
        assert snapshot.filter_options is None
        assert snapshot.record_count == 8

    async def test_raising_subscriber_does_not_block_others(self, orchestrator) -> None:
        received: List[int] = []

        def broken(snapshot: Snapshot) -> None:
            raise RuntimeError("render failed")

        orchestrator.subscribe(broken)
        orchestrator.subscribe(lambda s: received.append(s.generation))

        await orchestrator.refresh()

        assert received == [1]
        assert orchestrator.state == OrchestratorState.PUBLISHED


class TestSnapshotContents:

    async def test_snapshot_contains_pipeline_outputs(self, orchestrator, fake_service) -> None:
        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await orchestrator.wait_idle()

        snapshot = orchestrator.snapshot
        assert snapshot.generation == 1
        assert snapshot.filters['region'] == ['Western']
        assert snapshot.record_count == 6
        assert snapshot.summary.total_households == 6
        assert snapshot.record_averages.achieved_count == 4
        assert [t.series for t in snapshot.trends] == [OVERALL_SERIES, 'Bwera', 'Mpondwe']
        assert snapshot.filter_options.clusters == ['Bwera', 'Mpondwe']

    async def test_filter_options_requested_alongside_records(self, orchestrator, fake_service) -> None:
        fake_service.gates['Western'] = asyncio.Event()

        orchestrator.on_filter_change(FacetLevel.REGION, ['Western'])
        await wait_until(lambda: len(fake_service.option_calls) == 1)

        # Options were requested while the records request is still open
        assert fake_service.option_calls == [{'region': 'Western'}]
        assert orchestrator.snapshot is None

        fake_service.gates['Western'].set()
        await orchestrator.wait_idle()
        assert orchestrator.snapshot is not None

    async def test_async_subscriber_is_awaited_and_unsubscribe_works(self, orchestrator) -> None:
        received: List[int] = []

        async def on_snapshot(snapshot: Snapshot) -> None:
            await asyncio.sleep(0)
            received.append(snapshot.generation)

        unsubscribe = orchestrator.subscribe(on_snapshot)
        await orchestrator.refresh()
        unsubscribe()
        await orchestrator.refresh()

        assert received == [1]


class TestScope:

    async def test_scope_seeds_filters_and_restricts_records(self, fake_service, test_settings) -> None:
        fake_service.honour_filters = False
        scope = ScopeConstraint(facet=FacetLevel.REGION, value='Western')
        orchestrator = TrendOrchestrator(fake_service, settings=test_settings, scope=scope)

        assert orchestrator.filter_state.to_query() == {'region': 'Western'}

        orchestrator.on_filter_change(FacetLevel.REGION, ['Eastern'])
        await orchestrator.wait_idle()

        assert fake_service.evaluation_calls[0]['region'] == 'Western'
        assert fake_service.option_calls[0]['region'] == 'Western'
        assert {b.region for b in orchestrator.snapshot.buckets} == {'Western'}

    async def test_clear_filters_returns_to_scope(self, fake_service, test_settings) -> None:
        scope = ScopeConstraint(facet=FacetLevel.REGION, value='Western')
        orchestrator = TrendOrchestrator(fake_service, settings=test_settings, scope=scope)

        orchestrator.on_filter_change(FacetLevel.DISTRICT, ['Kasese'])
        orchestrator.clear_filters()
        await orchestrator.aclose()

        assert orchestrator.filter_state.to_query() == {'region': 'Western'}
