"""API-layer dependency functions.

Re-exports the factories from ``leadsignal.dependencies`` so endpoint
modules only import from ``leadsignal.api.deps``.
"""

from leadsignal.dependencies import (
    get_api_key,
    get_config_repo,
    get_event_valuation_service,
    get_lead_repo,
    get_redis_client,
    require_score_lead,
)

__all__ = [
    "get_api_key",
    "get_config_repo",
    "get_event_valuation_service",
    "get_lead_repo",
    "get_redis_client",
    "require_score_lead",
]
