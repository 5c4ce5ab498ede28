"""
Enumeration definitions for the Cluster Trends backend.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models and JSON API responses, and can be used directly as query
parameter names when talking to the evaluations service.

Source references:
- /standard-evaluations/ and /filter-options/ query parameters: FacetLevel
- Record collection outcomes: CollectionStatus, CollectionStrategy, IncompleteReason
- Orchestrator lifecycle: OrchestratorState
"""

from enum import Enum


class FacetLevel(str, Enum):
    """
    Filterable dimensions of an evaluation record.

    Declaration order IS the cascade order: changing the selection at one
    level clears every level declared after it. The values double as the
    query parameter names understood by the evaluations service.

    Values: cohort > cycle > evaluation_month > region > district > cluster > village
    """
    COHORT = "cohort"
    CYCLE = "cycle"
    EVALUATION_MONTH = "evaluation_month"
    REGION = "region"
    DISTRICT = "district"
    CLUSTER = "cluster"
    VILLAGE = "village"


class CollectionStatus(str, Enum):
    """
    Completeness of a collected record set.

    - complete: Every matching record the service reported was retrieved
    - partial: Collection stopped early (page ceiling or a later page failed);
      the records gathered so far are returned
    """
    COMPLETE = "complete"
    PARTIAL = "partial"


class CollectionStrategy(str, Enum):
    """Retrieval strategy that produced a record set."""
    BULK = "bulk"
    ITERATIVE = "iterative"


class IncompleteReason(str, Enum):
    """
    Why a collection is partial.

    - page_limit: The hard page ceiling was reached while the service still
      signalled more pages
    - page_failure: A page after the first failed in transport
    """
    PAGE_LIMIT = "page_limit"
    PAGE_FAILURE = "page_failure"


class OrchestratorState(str, Enum):
    """
    Lifecycle states of the trend orchestrator.

    Idle -> Debouncing -> Collecting -> Aggregating -> Forecasting -> Published,
    back to Debouncing on the next filter mutation. Failed is entered when a
    cycle raises; the previously published snapshot stays visible.
    """
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    COLLECTING = "collecting"
    AGGREGATING = "aggregating"
    FORECASTING = "forecasting"
    PUBLISHED = "published"
    FAILED = "failed"
