"""
FastAPI dependency injection for the Cluster Trends backend.

Endpoints receive configuration and the application's TrendOrchestrator
through these dependencies rather than module globals, so tests can swap
either with `app.dependency_overrides`.

Usage Examples:
    @router.get("/status")
    async def get_status(orchestrator: OrchestratorDep) -> StatusResponse:
        return StatusResponse(state=orchestrator.state)

    # In tests
    app.dependency_overrides[get_orchestrator] = lambda: fake_orchestrator
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from cluster_trends.core.config import Settings, get_settings
from cluster_trends.services.orchestrator import TrendOrchestrator


# =============================================================================
# Settings Dependency
# =============================================================================

def get_settings_dependency() -> Settings:
    """
    Return the Settings singleton instance.

    Thin wrapper around get_settings() so the dependency can be overridden:

        app.dependency_overrides[get_settings_dependency] = lambda: test_settings
    """
    return get_settings()


# =============================================================================
# Orchestrator Dependency
# =============================================================================

def get_orchestrator(request: Request) -> TrendOrchestrator:
    """
    Return the orchestrator created by the application lifespan.

    Raises:
        HTTPException 503: If the lifespan has not created one (startup
            failed or the app is being served without its lifespan).
    """
    orchestrator = getattr(request.app.state, 'orchestrator', None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Trend orchestrator is not available")
    return orchestrator


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

# Usage: async def endpoint(settings: SettingsDep)
SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

# Usage: async def endpoint(orchestrator: OrchestratorDep)
OrchestratorDep = Annotated[TrendOrchestrator, Depends(get_orchestrator)]
