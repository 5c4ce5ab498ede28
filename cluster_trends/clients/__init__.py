"""
Outbound clients for the Cluster Trends backend.

- evaluations: requests-based client for the remote evaluations service
"""

from cluster_trends.clients.evaluations import (
    EvaluationsClient,
    TransportError,
    build_params,
    EVALUATIONS_PATH,
    FILTER_OPTIONS_PATH,
)

__all__ = [
    'EvaluationsClient',
    'TransportError',
    'build_params',
    'EVALUATIONS_PATH',
    'FILTER_OPTIONS_PATH',
]
