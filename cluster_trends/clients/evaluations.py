"""
HTTP client for the remote evaluations service.

Wraps a `requests.Session` for the two read endpoints the pipeline consumes:

- GET /standard-evaluations/  paginated evaluation records
- GET /filter-options/        distinct facet values for the current constraint

`requests` is blocking, so every call is dispatched with `asyncio.to_thread`
to keep the orchestrator's event loop free while a request is in flight.

Every failure mode of a single call (connection error, timeout, non-2xx
status, undecodable JSON body) is raised as TransportError so callers can
apply one fallback policy to all of them.

Usage:
    client = EvaluationsClient(base_url="http://localhost:8000/api", timeout=30)
    body = await client.fetch_evaluations({"region": "Western", "page": "1"})
    options = await client.fetch_filter_options({"region": "Western"})
    client.close()
"""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional

import requests

from cluster_trends.core.config import Settings
from cluster_trends.models.schemas import FilterOptions


logger = logging.getLogger(__name__)


EVALUATIONS_PATH: str = "standard-evaluations/"
FILTER_OPTIONS_PATH: str = "filter-options/"


class TransportError(Exception):
    """A single request to the evaluations service failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class EvaluationsClient:
    """
    Thin async facade over the evaluations service REST API.

    Args:
        base_url: Service base URL; endpoint paths are appended to it.
        timeout: Per-request timeout in seconds.
        session: Optional pre-configured session (auth headers, retries).
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/") + "/"
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.setdefault("Accept", "application/json")

    @classmethod
    def from_settings(cls, settings: Settings) -> "EvaluationsClient":
        return cls(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def _get_json(self, path: str, params: Mapping[str, str]) -> Any:
        url = self.base_url + path
        try:
            response = self._session.get(url, params=dict(params), timeout=self.timeout)
        except requests.Timeout as e:
            raise TransportError(f"Request to {url} timed out after {self.timeout}s") from e
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

        if not response.ok:
            raise TransportError(
                f"{url} returned {response.status_code} {response.reason}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise TransportError(f"{url} returned a body that is not valid JSON") from e

    async def fetch_evaluations(self, params: Mapping[str, str]) -> Any:
        """
        Fetch one response from /standard-evaluations/.

        Args:
            params: Facet filters plus optional `page` / `page_size`.

        Returns:
            The decoded JSON body, unvalidated. Its shape is interpreted by
            the collector.

        Raises:
            TransportError: On any transport-level failure.
        """
        logger.debug(f"GET {EVALUATIONS_PATH} params={dict(params)}")
        return await asyncio.to_thread(self._get_json, EVALUATIONS_PATH, params)

    async def fetch_filter_options(self, params: Mapping[str, str]) -> FilterOptions:
        """
        Fetch the distinct facet values available under `params`.

        Raises:
            TransportError: On any transport-level failure.
        """
        body = await asyncio.to_thread(self._get_json, FILTER_OPTIONS_PATH, params)
        if not isinstance(body, dict):
            return FilterOptions()
        return FilterOptions.model_validate(body)

    def close(self) -> None:
        self._session.close()


def build_params(query: Mapping[str, str], **extra: Any) -> Dict[str, str]:
    """Merge a serialized filter query with extra parameters, all as strings."""
    params = dict(query)
    for key, value in extra.items():
        if value is not None:
            params[key] = str(value)
    return params
