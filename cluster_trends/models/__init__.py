"""
Package initialization file for cluster_trends models.

Re-exports the Pydantic schemas and enumerations so other modules can import
them from `cluster_trends.models` directly.

Usage:
    from cluster_trends.models import (
        FacetLevel,
        EvaluationRecord,
        AggregateBucket,
        TrendModel,
        Snapshot,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from cluster_trends.models.enums import (
    FacetLevel,
    CollectionStatus,
    CollectionStrategy,
    IncompleteReason,
    OrchestratorState,
)

# =============================================================================
# Schemas
# =============================================================================

from cluster_trends.models.schemas import (
    # Wire models
    EvaluationRecord,
    ScopeConstraint,
    FilterOptions,
    # Collection
    CollectionResult,
    # Aggregation
    AggregateBucket,
    SummaryStatistics,
    RecordAverages,
    # Trends
    ForecastPoint,
    TrendModel,
    # Publication
    Snapshot,
)


__all__ = [
    # Enums
    'FacetLevel',
    'CollectionStatus',
    'CollectionStrategy',
    'IncompleteReason',
    'OrchestratorState',
    # Wire models
    'EvaluationRecord',
    'ScopeConstraint',
    'FilterOptions',
    # Collection
    'CollectionResult',
    # Aggregation
    'AggregateBucket',
    'SummaryStatistics',
    'RecordAverages',
    # Trends
    'ForecastPoint',
    'TrendModel',
    # Publication
    'Snapshot',
]
