"""
Aggregation service: roll evaluation records up into per-bucket statistics.

A bucket is keyed by (cluster, evaluation_month, region, district). For each
bucket:

    household_count  = number of records in the bucket
    avg_income       = sum(predicted_income) / household_count
    achievement_rate = 100 * sum(prediction) / household_count

Buckets are recomputed from scratch on every pass and only exist for keys
with at least one record, so there is never a zero division. The output is
sorted by key so that repeated runs over the same records are identical;
callers that need another order (e.g. chronological per cluster) re-sort.

Also provides the headline figures shown next to the bucket table:
- summarize(): totals over buckets (clusters, months, mean income, households)
- summarize_records(): averages over the raw record set

Usage:
    from cluster_trends.services.aggregator import aggregate, summarize

    buckets = aggregate(result.records)
    summary = summarize(buckets)
"""

from typing import List, Sequence

import pandas as pd

from cluster_trends.models.schemas import (
    AggregateBucket,
    EvaluationRecord,
    RecordAverages,
    SummaryStatistics,
)


# Grouping key, in sort order
BUCKET_KEY: List[str] = ['cluster', 'evaluation_month', 'region', 'district']

RECORD_COLUMNS: List[str] = BUCKET_KEY + ['predicted_income', 'prediction']


def records_to_frame(records: Sequence[EvaluationRecord]) -> pd.DataFrame:
    """Build a DataFrame with the columns aggregation needs, one row per record."""
    return pd.DataFrame(
        [
            (
                r.cluster,
                r.evaluation_month,
                r.region,
                r.district,
                r.predicted_income,
                r.prediction,
            )
            for r in records
        ],
        columns=RECORD_COLUMNS,
    )


def aggregate(records: Sequence[EvaluationRecord]) -> List[AggregateBucket]:
    """
    Group records by bucket key and compute per-bucket statistics.

    Args:
        records: Collected evaluation records (any order).

    Returns:
        One AggregateBucket per distinct key, sorted by
        (cluster, evaluation_month, region, district). Empty input yields
        an empty list.

    Example:
        >>> buckets = aggregate(records)
        >>> sum(b.household_count for b in buckets) == len(records)
        True
    """
    if not records:
        return []

    df = records_to_frame(records)
    grouped = (
        df.groupby(BUCKET_KEY, sort=True)
        .agg(
            household_count=('prediction', 'size'),
            income_sum=('predicted_income', 'sum'),
            achievement_sum=('prediction', 'sum'),
        )
        .reset_index()
    )

    buckets: List[AggregateBucket] = []
    for row in grouped.itertuples(index=False):
        count = int(row.household_count)
        buckets.append(
            AggregateBucket(
                cluster=str(row.cluster),
                evaluation_month=int(row.evaluation_month),
                region=str(row.region),
                district=str(row.district),
                household_count=count,
                avg_income=float(row.income_sum) / count,
                achievement_rate=100 * int(row.achievement_sum) / count,
            )
        )
    return buckets


def summarize(buckets: Sequence[AggregateBucket]) -> SummaryStatistics:
    """
    Headline figures over a bucket table.

    `avg_income` is the unweighted mean of bucket averages, matching the
    figure the dashboard shows above the trends chart.
    """
    if not buckets:
        return SummaryStatistics()

    return SummaryStatistics(
        total_clusters=len({b.cluster for b in buckets}),
        evaluation_months=len({b.evaluation_month for b in buckets}),
        avg_income=sum(b.avg_income for b in buckets) / len(buckets),
        total_households=sum(b.household_count for b in buckets),
    )


def summarize_records(records: Sequence[EvaluationRecord]) -> RecordAverages:
    """Averages over the raw record set (prediction rate, income, achievers)."""
    if not records:
        return RecordAverages()

    total = len(records)
    achieved = sum(1 for r in records if r.prediction == 1)
    return RecordAverages(
        total_records=total,
        avg_prediction=sum(r.prediction for r in records) / total,
        avg_income=sum(r.predicted_income for r in records) / total,
        achieved_count=achieved,
    )
