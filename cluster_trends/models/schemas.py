"""
Pydantic models for the Cluster Trends backend.

This module provides type-safe validation and serialization for every value
that flows through the collection -> aggregation -> forecast pipeline:
evaluation records as returned by the evaluations service, scope constraints,
filter options, collection results, aggregate buckets, trend models and the
published snapshot.

Source references:
- /standard-evaluations/ response items: EvaluationRecord
- /filter-options/ response body: FilterOptions
- Cluster trends dashboard: AggregateBucket, TrendModel, SummaryStatistics
- Predictions dashboard headline figures: RecordAverages

All models use Pydantic v2 syntax. Models that cross a publication boundary
(records, buckets, trends, snapshots) are frozen.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cluster_trends.models.enums import (
    CollectionStatus,
    CollectionStrategy,
    FacetLevel,
    IncompleteReason,
)


# =============================================================================
# Wire Models (evaluations service)
# =============================================================================


class EvaluationRecord(BaseModel):
    """
    One household's evaluation outcome at one evaluation month.

    Source: items of the `results` (or legacy `predictions`) array returned by
    GET /standard-evaluations/.

    The service is loose about types: facet values may arrive as numbers and
    `predicted_income` may be null. Facets are coerced to strings so that
    they compare equal to the string selections held by the filter state,
    and a missing income is treated as 0.0.
    """
    model_config = ConfigDict(
        frozen=True,
        extra='ignore',
        json_schema_extra={
            "example": {
                "id": 1021,
                "household_id": "HH-000231",
                "cohort": "2023",
                "cycle": "A",
                "region": "Western",
                "district": "Kasese",
                "cluster": "Bwera",
                "village": "Kanyatsi",
                "evaluation_month": 6,
                "prediction": 1,
                "probability": 0.82,
                "predicted_income": 412.5
            }
        }
    )

    id: Optional[int] = Field(
        default=None,
        description="Service-side row identifier, used for deduplication when present"
    )
    household_id: str = Field(
        ...,
        description="Household identifier"
    )
    cohort: str = Field(default="", description="Program cohort")
    cycle: str = Field(default="", description="Program cycle")
    region: str = Field(default="", description="Region name")
    district: str = Field(default="", description="District name")
    cluster: str = Field(default="", description="Cluster name")
    village: str = Field(default="", description="Village name")
    evaluation_month: int = Field(
        ...,
        description="Months since program start at which the evaluation was taken"
    )
    prediction: int = Field(
        default=0,
        ge=0,
        le=1,
        description="Binary achievement outcome (1 = target achieved)"
    )
    probability: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=1.0,
        description="Achievement probability from the scoring service"
    )
    predicted_income: float = Field(
        default=0.0,
        description="Predicted income + production value (null on the wire -> 0.0)"
    )

    @field_validator(
        'household_id', 'cohort', 'cycle', 'region', 'district', 'cluster', 'village',
        mode='before',
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @field_validator('predicted_income', mode='before')
    @classmethod
    def _default_income(cls, value: Any) -> Any:
        return 0.0 if value is None else value

    def facet_value(self, level: FacetLevel) -> str:
        """Return this record's value for a facet, as the string form used in filters."""
        return str(getattr(self, level.value))


class ScopeConstraint(BaseModel):
    """
    Mandatory equality filter applied on behalf of a restricted caller.

    A caller scoped to one region (an area manager) can never see records
    outside it: the constraint is sent to the service as a query parameter
    and re-checked locally on every returned record.
    """
    model_config = ConfigDict(frozen=True)

    facet: FacetLevel = Field(
        default=FacetLevel.REGION,
        description="Facet the caller is restricted on"
    )
    value: str = Field(
        ...,
        min_length=1,
        description="The only value of `facet` the caller may see"
    )

    def matches(self, record: EvaluationRecord) -> bool:
        return record.facet_value(self.facet) == self.value


class FilterOptions(BaseModel):
    """
    Distinct facet values available under the current constraint.

    Source: GET /filter-options/ response body. Used only to populate facet
    pickers; missing arrays become empty lists.
    """
    regions: List[str] = Field(default_factory=list)
    districts: List[str] = Field(default_factory=list)
    villages: List[str] = Field(default_factory=list)
    clusters: List[str] = Field(default_factory=list)
    cohorts: List[str] = Field(default_factory=list)
    cycles: List[str] = Field(default_factory=list)
    evaluation_months: List[int] = Field(default_factory=list)

    @field_validator(
        'regions', 'districts', 'villages', 'clusters', 'cohorts', 'cycles',
        mode='before',
    )
    @classmethod
    def _coerce_text_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        return [str(item) for item in value if item is not None]

    @field_validator('evaluation_months', mode='before')
    @classmethod
    def _default_months(cls, value: Any) -> Any:
        return [] if value is None else value


# =============================================================================
# Collection Models
# =============================================================================


class CollectionResult(BaseModel):
    """
    Outcome of one record collection.

    `status` is `partial` whenever the collector knows the set may be
    truncated; `incomplete_reason` then says why. A transport failure on the
    very first iterative page is not represented here: it raises
    CollectionError instead.
    """
    records: List[EvaluationRecord] = Field(default_factory=list)
    status: CollectionStatus = Field(default=CollectionStatus.COMPLETE)
    strategy: CollectionStrategy = Field(
        ...,
        description="Strategy that produced the records"
    )
    pages_fetched: int = Field(
        default=0,
        ge=0,
        description="Number of successful requests that contributed records"
    )
    incomplete_reason: Optional[IncompleteReason] = Field(default=None)
    duplicates_removed: int = Field(default=0, ge=0)

    @property
    def is_complete(self) -> bool:
        return self.status == CollectionStatus.COMPLETE


# =============================================================================
# Aggregation Models
# =============================================================================


class AggregateBucket(BaseModel):
    """
    Summary statistics for one (cluster, evaluation_month, region, district) group.

    Buckets are recomputed from the record set on every aggregation pass and
    only exist for groups with at least one record.
    """
    model_config = ConfigDict(frozen=True)

    cluster: str
    evaluation_month: int
    region: str
    district: str
    household_count: int = Field(..., ge=0)
    avg_income: float
    achievement_rate: float = Field(
        ...,
        ge=0.0,
        le=100.0,
        description="Percentage of households with a positive outcome"
    )


class SummaryStatistics(BaseModel):
    """Headline figures over a bucket table (cluster trends summary cards)."""
    model_config = ConfigDict(frozen=True)

    total_clusters: int = 0
    evaluation_months: int = 0
    avg_income: float = Field(
        default=0.0,
        description="Unweighted mean of bucket avg_income values"
    )
    total_households: int = 0


class RecordAverages(BaseModel):
    """Headline figures over the raw record set (predictions dashboard)."""
    model_config = ConfigDict(frozen=True)

    total_records: int = 0
    avg_prediction: float = 0.0
    avg_income: float = 0.0
    achieved_count: int = 0


# =============================================================================
# Trend Models
# =============================================================================


class ForecastPoint(BaseModel):
    """One-step-ahead extrapolation of a series. Only ever built with value > 0."""
    model_config = ConfigDict(frozen=True)

    month: int
    value: float


class TrendModel(BaseModel):
    """
    Fitted least-squares line for one series.

    `series` is a cluster name, or "overall" for the line fitted over every
    pooled (month, avg_income) point. `is_overall` tells the pooled line
    apart from a cluster that happens to be named "overall". The start/end
    fields are the fitted line evaluated at the first and last observed
    month of the series.
    """
    model_config = ConfigDict(frozen=True)

    series: str
    is_overall: bool = Field(
        default=False,
        description="True only for the line pooled across every cluster"
    )
    slope: float
    intercept: float
    start_month: int
    end_month: int
    start_value: float
    end_value: float
    point_count: int = Field(..., ge=2)
    forecast: Optional[ForecastPoint] = Field(
        default=None,
        description="Next-interval projection; absent when it would be <= 0"
    )


# =============================================================================
# Published Snapshot
# =============================================================================


class Snapshot(BaseModel):
    """
    The externally visible result of one completed cycle.

    Immutable once published; each new snapshot fully replaces the previous
    one. `filters` and `query` record the exact filter state that produced it.
    """
    model_config = ConfigDict(frozen=True)

    generation: int = Field(..., ge=1)
    filters: Dict[str, List[str]] = Field(default_factory=dict)
    query: Dict[str, str] = Field(default_factory=dict)
    buckets: List[AggregateBucket] = Field(default_factory=list)
    trends: List[TrendModel] = Field(default_factory=list)
    summary: SummaryStatistics = Field(default_factory=SummaryStatistics)
    record_averages: RecordAverages = Field(default_factory=RecordAverages)
    filter_options: Optional[FilterOptions] = Field(
        default=None,
        description="None when filter-option discovery failed for this cycle"
    )
    collection_status: CollectionStatus = CollectionStatus.COMPLETE
    incomplete_reason: Optional[IncompleteReason] = None
    record_count: int = Field(default=0, ge=0)
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
