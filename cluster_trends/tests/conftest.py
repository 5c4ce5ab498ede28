"""
Pytest configuration and shared fixtures for the Cluster Trends test suite.

Provides:
- Settings tuned for fast tests (no page delay, short debounce)
- Wire-format evaluation record factories
- FakeEvaluationsService: an in-memory stand-in for the evaluations service
  that honours facet filters and can hold individual requests open so tests
  control the order in which concurrent cycles complete
"""

import asyncio
from typing import Any, Callable, Dict, List, Optional

import pytest

from cluster_trends.core.config import Settings
from cluster_trends.models.enums import FacetLevel
from cluster_trends.models.schemas import EvaluationRecord, FilterOptions


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Register custom markers.

    - slow: marks tests as slow (deselect with -m "not slow")
    """
    config.addinivalue_line(
        'markers',
        'slow: marks tests as slow (deselect with -m "not slow")'
    )


# ============================================================
# SETTINGS FIXTURES
# ============================================================

@pytest.fixture
def test_settings() -> Settings:
    """
    Settings for tests: no inter-page delay and a 10ms debounce.

    `.env` files are ignored so a developer's local configuration cannot
    leak into the suite.
    """
    return Settings(
        _env_file=None,
        api_base_url='http://evaluations.test/api',
        page_size=500,
        max_pages=50,
        page_delay_seconds=0.0,
        debounce_seconds=0.01,
    )


# ============================================================
# RECORD FIXTURES
# ============================================================

def wire_record(**overrides: Any) -> Dict[str, Any]:
    """One /standard-evaluations/ result item with sensible defaults."""
    record = {
        'id': None,
        'household_id': 'HH-0001',
        'cohort': '2023',
        'cycle': 'A',
        'region': 'Western',
        'district': 'Kasese',
        'cluster': 'Bwera',
        'village': 'Kanyatsi',
        'evaluation_month': 6,
        'prediction': 1,
        'probability': 0.8,
        'predicted_income': 400.0,
    }
    record.update(overrides)
    return record


@pytest.fixture
def record_factory() -> Callable[..., Dict[str, Any]]:
    """
    Factory for wire-format records.

    Usage:
        def test_something(record_factory):
            raw = record_factory(id=7, region='Eastern')
    """
    return wire_record


@pytest.fixture
def make_record() -> Callable[..., EvaluationRecord]:
    """Factory for validated EvaluationRecord instances."""
    def _make(**overrides: Any) -> EvaluationRecord:
        return EvaluationRecord.model_validate(wire_record(**overrides))
    return _make


@pytest.fixture
def mixed_region_records() -> List[Dict[str, Any]]:
    """
    Records across two regions, three clusters and three evaluation months.

    Western / Bwera:     months 3, 6, 9 with rising income
    Western / Mpondwe:   months 3, 6
    Eastern / Busia:     months 3, 6
    """
    return [
        wire_record(id=1, household_id='HH-1', cluster='Bwera', evaluation_month=3, predicted_income=100.0, prediction=0),
        wire_record(id=2, household_id='HH-2', cluster='Bwera', evaluation_month=3, predicted_income=200.0, prediction=1),
        wire_record(id=3, household_id='HH-1', cluster='Bwera', evaluation_month=6, predicted_income=250.0, prediction=1),
        wire_record(id=4, household_id='HH-1', cluster='Bwera', evaluation_month=9, predicted_income=300.0, prediction=1),
        wire_record(id=5, household_id='HH-3', cluster='Mpondwe', evaluation_month=3, predicted_income=80.0, prediction=0),
        wire_record(id=6, household_id='HH-3', cluster='Mpondwe', evaluation_month=6, predicted_income=120.0, prediction=1),
        wire_record(id=7, household_id='HH-9', region='Eastern', district='Busia', cluster='Busia', village='Masafu',
                    evaluation_month=3, predicted_income=90.0, prediction=0),
        wire_record(id=8, household_id='HH-9', region='Eastern', district='Busia', cluster='Busia', village='Masafu',
                    evaluation_month=6, predicted_income=60.0, prediction=0),
    ]


# ============================================================
# FAKE EVALUATIONS SERVICE
# ============================================================

class FakeEvaluationsService:
    """
    In-memory evaluations service.

    Responds to bulk requests with every matching record under `results`
    and to filter-option requests with the distinct facet values. Requests
    whose `region` parameter has an entry in `gates` wait for that event
    before answering, which lets a test decide which of two concurrent
    cycles finishes first.

    Attributes:
        evaluation_calls: Params of every fetch_evaluations call, in order.
        option_calls: Params of every fetch_filter_options call, in order.
        evaluation_error: Raised by every fetch_evaluations call when set.
        option_error: Raised by every fetch_filter_options call when set.
        honour_filters: When False, every record is returned regardless of
            the request (a misbehaving service).
    """

    def __init__(self, records: Optional[List[Dict[str, Any]]] = None):
        self.records = list(records or [])
        self.gates: Dict[str, asyncio.Event] = {}
        self.evaluation_calls: List[Dict[str, str]] = []
        self.option_calls: List[Dict[str, str]] = []
        self.evaluation_error: Optional[Exception] = None
        self.option_error: Optional[Exception] = None
        self.honour_filters = True

    def _matching(self, params: Dict[str, str]) -> List[Dict[str, Any]]:
        if not self.honour_filters:
            return list(self.records)
        selected = {}
        for level in FacetLevel:
            if level.value in params:
                selected[level.value] = set(params[level.value].split(','))
        return [
            r for r in self.records
            if all(str(r[key]) in allowed for key, allowed in selected.items())
        ]

    async def _wait_for_gate(self, params: Dict[str, str]) -> None:
        gate = self.gates.get(params.get('region', ''))
        if gate is not None:
            await gate.wait()

    async def fetch_evaluations(self, params: Dict[str, str]) -> Dict[str, Any]:
        self.evaluation_calls.append(dict(params))
        await self._wait_for_gate(params)
        if self.evaluation_error is not None:
            raise self.evaluation_error
        results = self._matching(params)
        return {'count': len(results), 'next': None, 'results': results}

    async def fetch_filter_options(self, params: Dict[str, str]) -> FilterOptions:
        self.option_calls.append(dict(params))
        if self.option_error is not None:
            raise self.option_error
        results = self._matching(params)
        return FilterOptions(
            regions=sorted({r['region'] for r in results}),
            districts=sorted({r['district'] for r in results}),
            villages=sorted({r['village'] for r in results}),
            clusters=sorted({r['cluster'] for r in results}),
            cohorts=sorted({r['cohort'] for r in results}),
            cycles=sorted({r['cycle'] for r in results}),
            evaluation_months=sorted({r['evaluation_month'] for r in results}),
        )


@pytest.fixture
def fake_service(mixed_region_records: List[Dict[str, Any]]) -> FakeEvaluationsService:
    return FakeEvaluationsService(mixed_region_records)
