from enum import Enum


class Platform(str, Enum):
    META_CAPI = "meta_capi"
    GOOGLE_ADS = "google_ads"


class DispatchStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class DispatchOutcome(str, Enum):
    """Audit-log outcome of a single dispatch attempt."""

    SENT = "SENT"
    SKIPPED = "SKIPPED"
    RETRYABLE_ERROR = "RETRYABLE_ERROR"
    TERMINAL_ERROR = "TERMINAL_ERROR"
    EXHAUSTED = "EXHAUSTED"


class IntegrationType(str, Enum):
    META_CAPI = "META_CAPI"
    GOOGLE_ADS = "GOOGLE_ADS"


class IntegrationStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    ERROR = "ERROR"
    DISABLED = "DISABLED"


class ScoringCategory(str, Enum):
    FIRMOGRAPHIC = "FIRMOGRAPHIC"
    BEHAVIORAL = "BEHAVIORAL"
    ENGAGEMENT = "ENGAGEMENT"


class SegmentIdentificationType(str, Enum):
    email_domain = "email_domain"
    form_field = "form_field"
    behavioral = "behavioral"


class EmailType(str, Enum):
    business = "business"
    consumer = "consumer"


class VolumeStatus(str, Enum):
    sufficient = "sufficient"
    borderline = "borderline"
    insufficient = "insufficient"
