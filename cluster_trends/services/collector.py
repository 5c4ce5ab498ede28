"""
Record collection service: fetch every evaluation record matching a filter.

The evaluations service is paginated and not always consistent (it has been
observed to ignore page sizes, mis-report `next`, and return records outside
a requested region). This module turns a serialized filter query into a
complete, deduplicated, scope-verified record set using two strategies.

Algorithm Overview:
    1. Bulk: one request without page/page_size. A non-empty records array
       (under `results`, legacy `predictions`, or a bare array body) is
       accepted as complete. An empty array or a transport failure is
       inconclusive and falls through to (2).
    2. Iterative: pages of `page_size` records, requested strictly in order.
       Continues while the service reports a `next` page AND the last page
       was exactly full. Stops at `max_pages` regardless.

Local Verification:
    Every returned record is re-checked against the scope constraint and the
    filter query before it enters the result. The service's own filtering is
    treated as a hint, not a guarantee.

Failure Semantics:
    - Bulk transport failure          -> fall back to iterative
    - Iterative page 1 failure        -> CollectionError
    - Iterative page k > 1 failure    -> partial result (page_failure)
    - Page ceiling with more signalled -> partial result (page_limit)
    - Malformed body (no records key)  -> zero records for that call

Usage:
    result = await collect(client, {"region": "Western"}, scope=scope)
    if not result.is_complete:
        logger.warning(f"Partial collection: {result.incomplete_reason}")
"""

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Tuple

from pydantic import ValidationError

from cluster_trends.clients.evaluations import TransportError, build_params
from cluster_trends.core.config import Settings, get_settings
from cluster_trends.models.enums import (
    CollectionStatus,
    CollectionStrategy,
    FacetLevel,
    IncompleteReason,
)
from cluster_trends.models.schemas import (
    CollectionResult,
    EvaluationRecord,
    ScopeConstraint,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Response keys that may hold the records array, in lookup order.
# `predictions` is the legacy response shape.
RECORD_KEYS: Tuple[str, ...] = ("results", "predictions")


class EvaluationsSource(Protocol):
    """The part of EvaluationsClient the collector depends on."""

    async def fetch_evaluations(self, params: Mapping[str, str]) -> Any:
        ...


class CollectionError(Exception):
    """No usable record set could be retrieved for a filter query."""


# =============================================================================
# Response Parsing
# =============================================================================


def extract_raw_records(body: Any) -> List[Any]:
    """
    Pull the records array out of a response body.

    Accepts `{"results": [...]}`, `{"predictions": [...]}` and a bare array.
    Anything else is a malformed shape and yields an empty list.
    """
    if isinstance(body, list):
        return body
    if isinstance(body, dict):
        for key in RECORD_KEYS:
            value = body.get(key)
            if isinstance(value, list):
                return value
    logger.warning("Evaluations response has no records array; treating as empty")
    return []


def has_next_page(body: Any) -> bool:
    return isinstance(body, dict) and bool(body.get("next"))


def parse_records(raw_records: Iterable[Any]) -> List[EvaluationRecord]:
    """Validate raw items into EvaluationRecord, skipping items that fail validation."""
    records: List[EvaluationRecord] = []
    skipped = 0
    for item in raw_records:
        try:
            records.append(EvaluationRecord.model_validate(item))
        except ValidationError:
            skipped += 1
    if skipped:
        logger.warning(f"Skipped {skipped} malformed evaluation records")
    return records


# =============================================================================
# Local Verification
# =============================================================================


def parse_query(filter_query: Mapping[str, str]) -> Dict[FacetLevel, frozenset]:
    """Turn a serialized query back into facet -> allowed values; unknown keys are ignored."""
    constraints: Dict[FacetLevel, frozenset] = {}
    for key, csv_values in filter_query.items():
        try:
            level = FacetLevel(key)
        except ValueError:
            continue
        values = frozenset(v.strip() for v in str(csv_values).split(",") if v.strip())
        if values:
            constraints[level] = values
    return constraints


def matches_query(
    record: EvaluationRecord,
    constraints: Mapping[FacetLevel, frozenset],
) -> bool:
    return all(
        record.facet_value(level) in allowed
        for level, allowed in constraints.items()
    )


def filter_records(
    records: Iterable[EvaluationRecord],
    constraints: Mapping[FacetLevel, frozenset],
    scope: Optional[ScopeConstraint],
) -> List[EvaluationRecord]:
    """Keep only records that satisfy both the scope constraint and the filter query."""
    kept: List[EvaluationRecord] = []
    rejected = 0
    for record in records:
        if scope is not None and not scope.matches(record):
            rejected += 1
            continue
        if not matches_query(record, constraints):
            rejected += 1
            continue
        kept.append(record)
    if rejected:
        logger.warning(f"Dropped {rejected} records outside the requested filter/scope")
    return kept


def record_identity(record: EvaluationRecord) -> Tuple[Any, ...]:
    if record.id is not None:
        return ("id", record.id)
    return ("natural", record.household_id, record.evaluation_month, record.cohort, record.cycle)


def deduplicate(records: Iterable[EvaluationRecord]) -> Tuple[List[EvaluationRecord], int]:
    """
    Drop repeated records (overlapping pages), keeping the first occurrence.

    Returns:
        Tuple of (unique records, number of duplicates removed).
    """
    seen = set()
    unique: List[EvaluationRecord] = []
    removed = 0
    for record in records:
        identity = record_identity(record)
        if identity in seen:
            removed += 1
            continue
        seen.add(identity)
        unique.append(record)
    return unique, removed


# =============================================================================
# Strategies
# =============================================================================


async def fetch_bulk(
    client: EvaluationsSource,
    params: Mapping[str, str],
) -> Optional[List[EvaluationRecord]]:
    """
    Bulk strategy: a single request with no explicit page size.

    Returns:
        The parsed records, or None when the attempt is inconclusive
        (transport failure, an empty records array, or no item that
        validates).
    """
    try:
        body = await client.fetch_evaluations(params)
    except TransportError as e:
        logger.warning(f"Bulk fetch failed, falling back to paged fetch: {e}")
        return None

    raw_records = extract_raw_records(body)
    if not raw_records:
        logger.info("Bulk fetch returned no records, falling back to paged fetch")
        return None

    records = parse_records(raw_records)
    if not records:
        logger.warning("No bulk record passed validation, falling back to paged fetch")
        return None
    return records


async def fetch_iteratively(
    client: EvaluationsSource,
    params: Mapping[str, str],
    constraints: Mapping[FacetLevel, frozenset],
    scope: Optional[ScopeConstraint],
    settings: Settings,
) -> CollectionResult:
    """
    Iterative strategy: fixed-size pages requested strictly in sequence.

    Page N+1 is only requested after page N's response has been observed,
    since the continuation signal comes from page N. Each page is filtered
    locally before its records are appended.

    Raises:
        CollectionError: If the first page fails in transport.
    """
    records: List[EvaluationRecord] = []
    page = 1
    pages_fetched = 0
    status = CollectionStatus.COMPLETE
    reason: Optional[IncompleteReason] = None

    while True:
        page_params = build_params(params, page=page, page_size=settings.page_size)
        try:
            body = await client.fetch_evaluations(page_params)
        except TransportError as e:
            if page == 1:
                raise CollectionError(f"First page request failed: {e}") from e
            logger.warning(
                f"Page {page} failed after {pages_fetched} pages; "
                f"keeping {len(records)} records gathered so far: {e}"
            )
            status = CollectionStatus.PARTIAL
            reason = IncompleteReason.PAGE_FAILURE
            break

        raw_records = extract_raw_records(body)
        if not raw_records:
            break

        pages_fetched += 1
        records.extend(filter_records(parse_records(raw_records), constraints, scope))
        logger.info(
            f"Fetched page {page}: {len(raw_records)} records "
            f"(total kept {len(records)}, next={has_next_page(body)})"
        )

        has_more = has_next_page(body) and len(raw_records) == settings.page_size
        if not has_more:
            break

        if pages_fetched >= settings.max_pages:
            logger.warning(
                f"Reached the {settings.max_pages}-page ceiling with more pages "
                f"signalled; returning {len(records)} records as a partial set"
            )
            status = CollectionStatus.PARTIAL
            reason = IncompleteReason.PAGE_LIMIT
            break

        page += 1
        await asyncio.sleep(settings.page_delay_seconds)

    return CollectionResult(
        records=records,
        status=status,
        strategy=CollectionStrategy.ITERATIVE,
        pages_fetched=pages_fetched,
        incomplete_reason=reason,
    )


# =============================================================================
# Main Entry Point
# =============================================================================


async def collect(
    client: EvaluationsSource,
    filter_query: Mapping[str, str],
    scope: Optional[ScopeConstraint] = None,
    settings: Optional[Settings] = None,
) -> CollectionResult:
    """
    Retrieve every evaluation record matching `filter_query`.

    Args:
        client: Source of /standard-evaluations/ responses.
        filter_query: Serialized filter state (facet -> comma-joined values).
        scope: Optional mandatory equality filter. It overrides any user
            selection on the same facet in the request, and is enforced
            locally on every returned record.
        settings: Page size / ceiling / delay configuration; defaults to
            the application settings.

    Returns:
        CollectionResult whose records all satisfy `scope` and
        `filter_query`, deduplicated. `status` is partial when the set may
        be truncated.

    Raises:
        CollectionError: When the bulk attempt was inconclusive and the
            first iterative page also failed.
    """
    settings = settings or get_settings()

    params: Dict[str, str] = dict(filter_query)
    if scope is not None:
        params[scope.facet.value] = scope.value
    constraints = parse_query(params)

    bulk_records = await fetch_bulk(client, params)
    if bulk_records is not None:
        kept = filter_records(bulk_records, constraints, scope)
        result = CollectionResult(
            records=kept,
            status=CollectionStatus.COMPLETE,
            strategy=CollectionStrategy.BULK,
            pages_fetched=1,
        )
    else:
        result = await fetch_iteratively(client, params, constraints, scope, settings)

    unique, removed = deduplicate(result.records)
    if removed:
        logger.warning(f"Removed {removed} duplicate records from {result.strategy.value} fetch")

    logger.info(
        f"Collected {len(unique)} records via {result.strategy.value} "
        f"({result.status.value}, {result.pages_fetched} requests)"
    )
    return result.model_copy(update={"records": unique, "duplicates_removed": removed})
