from leadsignal.models.base import Base
from leadsignal.models.organization import Organization, ApiKey
from leadsignal.models.funnel import Funnel, BusinessMetrics
from leadsignal.models.scoring_rule import ScoringRule
from leadsignal.models.segment import AudienceSegment
from leadsignal.models.lead import Lead
from leadsignal.models.conversion_event import ConversionEvent
from leadsignal.models.integration import Integration
from leadsignal.models.dispatch_log import DispatchLog

__all__ = [
    "Base",
    "Organization",
    "ApiKey",
    "Funnel",
    "BusinessMetrics",
    "ScoringRule",
    "AudienceSegment",
    "Lead",
    "ConversionEvent",
    "Integration",
    "DispatchLog",
]
