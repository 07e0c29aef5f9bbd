"""Repository layer: every database query in the service goes through here."""

from leadsignal.repositories.api_key_repository import ApiKeyRepository
from leadsignal.repositories.config_repository import OrganizationConfigRepository
from leadsignal.repositories.conversion_event_repository import (
    ConversionEventRepository,
)
from leadsignal.repositories.dispatch_log_repository import DispatchLogRepository
from leadsignal.repositories.integration_repository import IntegrationRepository
from leadsignal.repositories.lead_repository import LeadRepository

__all__ = [
    "ApiKeyRepository",
    "OrganizationConfigRepository",
    "ConversionEventRepository",
    "DispatchLogRepository",
    "IntegrationRepository",
    "LeadRepository",
]
