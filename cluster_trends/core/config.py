"""
Settings and environment management module for the Cluster Trends backend.

Centralized configuration using pydantic-settings, which loads values from
environment variables and an optional .env file.

Key Features:
- Environment variable validation and type coercion
- Sensible defaults for local development
- Singleton pattern via @lru_cache for efficient access

Environment Variables:
- API_BASE_URL: Base URL of the evaluations service (default: http://localhost:8000/api)
- REQUEST_TIMEOUT_SECONDS: Per-request timeout for the evaluations service
- SCOPE_FACET / SCOPE_VALUE: Optional mandatory equality filter for this deployment
- LOG_LEVEL: Root logging level

Collection / Orchestration Defaults:
- page_size: 500 (records per page in the iterative strategy)
- max_pages: 50 (hard ceiling, 25,000 records)
- page_delay_seconds: 0.1 (pause between page requests)
- debounce_seconds: 0.3 (quiet period before a filter change is acted on)

Usage:
    from cluster_trends.core.config import get_settings

    settings = get_settings()
    page_size = settings.page_size
"""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from cluster_trends.models.enums import FacetLevel
from cluster_trends.models.schemas import ScopeConstraint


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Attributes:
        api_base_url: Base URL of the evaluations service; endpoint paths
            such as `standard-evaluations/` are appended to it.
        request_timeout_seconds: Timeout applied to every outbound request.
            Expiry counts as a transport failure.
        page_size: Records requested per page by the iterative strategy.
        max_pages: Page ceiling for the iterative strategy.
        page_delay_seconds: Sleep inserted between page requests.
        debounce_seconds: Debounce window for filter changes.
        scope_facet: Facet restricted by the deployment scope.
        scope_value: Value the deployment is restricted to; None for an
            unrestricted deployment.
        log_level: Root logging level name.
        cors_origins: Origins allowed to call the HTTP surface.
    """

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        extra='ignore',
        case_sensitive=False,
    )

    # =========================================================================
    # Evaluations Service
    # =========================================================================

    api_base_url: str = 'http://localhost:8000/api'

    # No timeout is set by the dashboard; a hung request would otherwise
    # stall a whole cycle
    request_timeout_seconds: float = 30.0

    # =========================================================================
    # Record Collection
    # =========================================================================

    page_size: int = 500

    # 50 pages x 500 records = 25,000 records
    max_pages: int = 50

    page_delay_seconds: float = 0.1

    # =========================================================================
    # Orchestration
    # =========================================================================

    debounce_seconds: float = 0.3

    # =========================================================================
    # Deployment Scope
    # =========================================================================

    scope_facet: FacetLevel = FacetLevel.REGION
    scope_value: Optional[str] = None

    # =========================================================================
    # HTTP Surface / Logging
    # =========================================================================

    log_level: str = 'INFO'

    cors_origins: List[str] = [
        'http://localhost:3000',
        'http://127.0.0.1:3000',
    ]

    def scope_constraint(self) -> Optional[ScopeConstraint]:
        """Build the deployment scope constraint, or None when unscoped."""
        if not self.scope_value:
            return None
        return ScopeConstraint(facet=self.scope_facet, value=self.scope_value)


@lru_cache()
def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Returns:
        Settings: The cached settings instance.

    Note:
        To refresh settings in tests, clear the cache:
        >>> get_settings.cache_clear()
    """
    return Settings()
