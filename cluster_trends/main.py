"""
FastAPI application entry point for the Cluster Trends API.

Builds the evaluations client and the application's TrendOrchestrator in the
lifespan hook, configures CORS, and registers the trends router.

Scoped deployments (e.g. an area manager limited to one region) set
SCOPE_FACET / SCOPE_VALUE; every snapshot produced by this process is then
restricted to that facet value.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from cluster_trends import __version__
from cluster_trends.api import api_router
from cluster_trends.clients.evaluations import EvaluationsClient
from cluster_trends.core.config import get_settings
from cluster_trends.services.orchestrator import TrendOrchestrator

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Lifespan context manager for FastAPI application startup and shutdown events.

    On startup:
        - Create the evaluations client and the trend orchestrator

    On shutdown:
        - Wait for in-flight cycles, then close the HTTP session
    """
    # Startup
    scope = settings.scope_constraint()
    client = EvaluationsClient.from_settings(settings)
    orchestrator = TrendOrchestrator(client, settings=settings, scope=scope)
    app.state.orchestrator = orchestrator

    if scope is not None:
        logger.info(f"Cluster Trends API starting (scoped to {scope.facet.value}={scope.value})")
    else:
        logger.info("Cluster Trends API starting")
    logger.info(f"Evaluations service: {settings.api_base_url}")

    yield

    # Shutdown
    logger.info("Cluster Trends API shutting down")
    try:
        await orchestrator.aclose()
    except Exception as e:
        logger.error(f"Error stopping trend orchestrator: {e}")
    finally:
        client.close()
        app.state.orchestrator = None


# Create FastAPI application
app = FastAPI(
    title="Cluster Trends API",
    version=__version__,
    description=(
        "Cluster-level income and achievement trends over household "
        "evaluations, with cascading filters and linear forecasts."
    ),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.get("/health")
async def health_check():
    """
    Health check endpoint for monitoring and load balancer probes.

    Returns:
        Dict with status 'healthy'
    """
    return {"status": "healthy"}


@app.get("/")
async def root():
    return {
        "name": "Cluster Trends API",
        "version": __version__,
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


# Run with uvicorn when executed directly
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "cluster_trends.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
