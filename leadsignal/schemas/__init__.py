"""Pydantic schemas package – re-exports for convenience."""

# Common enums
from leadsignal.schemas.common import (
    Platform as Platform,
    DispatchStatus as DispatchStatus,
    DispatchOutcome as DispatchOutcome,
    IntegrationType as IntegrationType,
    IntegrationStatus as IntegrationStatus,
    ScoringCategory as ScoringCategory,
    SegmentIdentificationType as SegmentIdentificationType,
    EmailType as EmailType,
    VolumeStatus as VolumeStatus,
)

# Funnel configuration
from leadsignal.schemas.funnel import (
    FunnelStep as FunnelStep,
    BusinessMetricsInput as BusinessMetricsInput,
)

# Webhook schemas
from leadsignal.schemas.webhook import (
    ScoreLeadRequest as ScoreLeadRequest,
    ScoreLeadResponse as ScoreLeadResponse,
    ScoringBreakdown as ScoringBreakdown,
    ValueBreakdown as ValueBreakdown,
    PlatformStatus as PlatformStatus,
)

# Dispatch job snapshot
from leadsignal.schemas.dispatch import (
    DispatchJob as DispatchJob,
    EventSnapshot as EventSnapshot,
    UserDataSnapshot as UserDataSnapshot,
)

# Integration credentials
from leadsignal.schemas.integration import (
    ActiveIntegration as ActiveIntegration,
    MetaCapiCredentials as MetaCapiCredentials,
    GoogleAdsCredentials as GoogleAdsCredentials,
)
