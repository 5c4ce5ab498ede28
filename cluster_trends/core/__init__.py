"""
Core infrastructure package for the Cluster Trends backend.

Provides configuration management via pydantic-settings. FastAPI dependency
helpers live in `cluster_trends.core.dependencies` and are imported from
there directly, since they depend on the services layer.

Usage:
    from cluster_trends.core import get_settings
    settings = get_settings()
    print(settings.api_base_url)
"""

from cluster_trends.core.config import Settings, get_settings

__all__ = [
    'Settings',
    'get_settings',
]
