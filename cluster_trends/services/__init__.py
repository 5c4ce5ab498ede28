"""
Cluster Trends Services Module

Business logic for the cluster trends pipeline. Every service except the
orchestrator is stateless and can be tested in isolation.

Services:
- filter_state: Cascading multi-level filter selection and query serialization
- collector: Bulk / paginated record retrieval with local scope verification
- aggregator: Per (cluster, month, region, district) bucket statistics
- forecaster: Least-squares trend lines and one-step income forecasts
- orchestrator: Debounced, generation-guarded pipeline driver

Data flow:
    FilterState -> collect() -> aggregate() -> forecast() -> Snapshot
"""

# =============================================================================
# Filter State Exports
# =============================================================================

from cluster_trends.services.filter_state import (
    FilterState,
    FACET_ORDER,
)

# =============================================================================
# Collector Exports
# Bulk-then-iterative record retrieval against the evaluations service
# =============================================================================

from cluster_trends.services.collector import (
    collect,
    fetch_bulk,
    fetch_iteratively,
    extract_raw_records,
    parse_records,
    filter_records,
    deduplicate,
    CollectionError,
)

# =============================================================================
# Aggregator Exports
# =============================================================================

from cluster_trends.services.aggregator import (
    aggregate,
    summarize,
    summarize_records,
    BUCKET_KEY,
)

# =============================================================================
# Forecaster Exports
# Ordinary least-squares per cluster plus the pooled overall line
# =============================================================================

from cluster_trends.services.forecaster import (
    forecast,
    fit_linear_trend,
    forecast_interval,
    trend_for_cluster,
    overall_trend,
    OVERALL_SERIES,
)

# =============================================================================
# Orchestrator Exports
# =============================================================================

from cluster_trends.services.orchestrator import TrendOrchestrator

__all__ = [
    # ----- Filter State -----
    'FilterState',
    'FACET_ORDER',
    # ----- Collector -----
    'collect',
    'fetch_bulk',
    'fetch_iteratively',
    'extract_raw_records',
    'parse_records',
    'filter_records',
    'deduplicate',
    'CollectionError',
    # ----- Aggregator -----
    'aggregate',
    'summarize',
    'summarize_records',
    'BUCKET_KEY',
    # ----- Forecaster -----
    'forecast',
    'fit_linear_trend',
    'forecast_interval',
    'trend_for_cluster',
    'overall_trend',
    'OVERALL_SERIES',
    # ----- Orchestrator -----
    'TrendOrchestrator',
]
