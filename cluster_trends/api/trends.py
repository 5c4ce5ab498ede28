"""
FastAPI router module for the Cluster Trends dashboard.

Lets a UI collaborator drive the application's TrendOrchestrator over HTTP:
change facet selections, force a refresh, and read the latest published
snapshot together with the loading state.

Key Endpoints:
- GET /trends/filters: Current selections, serialized query, active count
- POST /trends/filters/{level}: Select values at one facet (cascades downward)
- DELETE /trends/filters: Reset to the session-start selection
- POST /trends/refresh: Run a cycle immediately and return its snapshot
- GET /trends/snapshot: Latest published snapshot
- GET /trends/status: Orchestrator state, loading flag, generation, last error,
  scope and the collection settings in effect

Filter mutations return immediately with state `debouncing`; the resulting
snapshot is published asynchronously and read back via GET /trends/snapshot.

Dependencies:
- cluster_trends/core/dependencies.py: OrchestratorDep, SettingsDep
- cluster_trends/models/schemas.py: Snapshot
"""

import logging
from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from cluster_trends.core.dependencies import OrchestratorDep, SettingsDep
from cluster_trends.models.enums import FacetLevel, OrchestratorState
from cluster_trends.models.schemas import Snapshot
from cluster_trends.services.orchestrator import TrendOrchestrator


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Request / Response Models
# =============================================================================

class FilterSelectionRequest(BaseModel):
    """Values to select at one facet level; an empty list clears the facet."""
    values: List[str] = Field(default_factory=list)


class FilterStateResponse(BaseModel):
    filters: Dict[str, List[str]]
    query: Dict[str, str]
    active_count: int
    state: OrchestratorState
    is_loading: bool


class StatusResponse(BaseModel):
    state: OrchestratorState
    is_loading: bool
    generation: int = Field(..., description="Number of cycles started so far")
    published_generation: Optional[int] = Field(
        default=None,
        description="Generation of the currently published snapshot"
    )
    last_error: Optional[str] = None
    scope: Optional[Dict[str, str]] = Field(
        default=None,
        description="Deployment scope as facet -> value; None when unscoped"
    )
    debounce_seconds: float
    page_size: int
    max_pages: int


# =============================================================================
# Helper Functions
# =============================================================================

def _filter_state_response(orchestrator: TrendOrchestrator) -> FilterStateResponse:
    state = orchestrator.filter_state
    return FilterStateResponse(
        filters=state.as_dict(),
        query=state.to_query(),
        active_count=state.active_count(),
        state=orchestrator.state,
        is_loading=orchestrator.is_loading(),
    )


# =============================================================================
# Filter Endpoints
# =============================================================================

@router.get(
    '/filters',
    response_model=FilterStateResponse,
    summary="Get Filter State",
)
async def get_filters(orchestrator: OrchestratorDep) -> FilterStateResponse:
    return _filter_state_response(orchestrator)


@router.post(
    '/filters/{level}',
    response_model=FilterStateResponse,
    status_code=202,
    summary="Select Facet Values",
    description="""
    Replace the selection at one facet level. Every level after it in the
    cascade order (cohort > cycle > evaluation_month > region > district >
    cluster > village) is cleared. A new snapshot is produced once the
    selection has been stable for the debounce interval.
    """
)
async def set_filter(
    level: FacetLevel,
    request: FilterSelectionRequest,
    orchestrator: OrchestratorDep,
) -> FilterStateResponse:
    """
    Apply a facet selection through the orchestrator.

    Raises:
        HTTPException 422: Unknown facet level (FastAPI path validation).
        HTTPException 500: If the selection could not be applied.
    """
    logger.info(f"Filter change requested: {level.value}={request.values}")
    try:
        orchestrator.on_filter_change(level, request.values)
        return _filter_state_response(orchestrator)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error applying filter {level.value}: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to apply filter: {str(e)}"
        )


@router.delete(
    '/filters',
    response_model=FilterStateResponse,
    status_code=202,
    summary="Clear Filters",
)
async def clear_filters(orchestrator: OrchestratorDep) -> FilterStateResponse:
    """Reset every facet (except a deployment scope) and schedule a new cycle."""
    try:
        orchestrator.clear_filters()
        return _filter_state_response(orchestrator)
    except Exception as e:
        logger.error(f"Error clearing filters: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to clear filters: {str(e)}"
        )


# =============================================================================
# Snapshot Endpoints
# =============================================================================

@router.post(
    '/refresh',
    response_model=Snapshot,
    summary="Refresh Trends",
    description="""
    Run a collection cycle for the current filter state immediately,
    bypassing the debounce, and return the snapshot it published.
    """
)
async def refresh(orchestrator: OrchestratorDep) -> Snapshot:
    """
    Raises:
        HTTPException 409: If a newer filter change superseded this cycle.
        HTTPException 502: If the cycle failed (the previous snapshot is kept).
    """
    try:
        snapshot = await orchestrator.refresh()
        if snapshot is not None:
            return snapshot
        if orchestrator.state == OrchestratorState.FAILED:
            raise HTTPException(
                status_code=502,
                detail=f"Trend refresh failed: {orchestrator.last_error}"
            )
        raise HTTPException(
            status_code=409,
            detail="Refresh was superseded by a newer filter change"
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error refreshing trends: {e}")
        raise HTTPException(
            status_code=500,
            detail=f"Failed to refresh trends: {str(e)}"
        )


@router.get(
    '/snapshot',
    response_model=Snapshot,
    summary="Get Latest Snapshot",
)
async def get_snapshot(orchestrator: OrchestratorDep) -> Snapshot:
    """
    Return the most recently published snapshot.

    Raises:
        HTTPException 404: If nothing has been published yet.
    """
    snapshot = orchestrator.snapshot
    if snapshot is None:
        raise HTTPException(
            status_code=404,
            detail="No trend snapshot has been published yet"
        )
    return snapshot


@router.get(
    '/status',
    response_model=StatusResponse,
    summary="Get Orchestrator Status",
)
async def get_status(orchestrator: OrchestratorDep, settings: SettingsDep) -> StatusResponse:
    snapshot = orchestrator.snapshot
    scope = orchestrator.scope
    return StatusResponse(
        state=orchestrator.state,
        is_loading=orchestrator.is_loading(),
        generation=orchestrator.generation,
        published_generation=snapshot.generation if snapshot else None,
        last_error=orchestrator.last_error,
        scope={scope.facet.value: scope.value} if scope else None,
        debounce_seconds=settings.debounce_seconds,
        page_size=settings.page_size,
        max_pages=settings.max_pages,
    )
