"""
Cluster Trends Backend Package.

Collects household evaluation records from the evaluations service, rolls
them up per cluster and evaluation month, fits income trend lines with a
one-step forecast, and publishes the result as immutable snapshots driven by
cascading facet filters.

Subpackages:
    - api: FastAPI route handlers
    - clients: Outbound evaluations service client
    - core: Configuration and dependencies
    - models: Pydantic schemas and enums
    - services: Collection, aggregation, forecasting and orchestration
"""

__version__ = "1.0.0"
