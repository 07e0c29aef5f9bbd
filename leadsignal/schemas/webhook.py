"""Conversion-event webhook schemas (request + response)."""

from datetime import datetime
from typing import List, Optional, Union
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    HttpUrl,
    IPvAnyAddress,
    field_validator,
)
from pydantic.alias_generators import to_camel


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class ScoreLeadRequest(BaseModel):
    """Body for POST /api/v1/score-lead.

    PII fields are hashed (and the raw values encrypted) before anything
    is persisted or forwarded.
    """

    event_name: str = Field(..., min_length=1, max_length=100)
    event_id: Optional[str] = Field(None, min_length=1, max_length=255)
    timestamp: Optional[datetime] = None

    # PII
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, max_length=32)
    external_id: Optional[str] = Field(None, max_length=255)

    # Platform click identifiers
    gclid: Optional[str] = Field(None, max_length=255)
    fbc: Optional[str] = Field(None, max_length=255)
    fbp: Optional[str] = Field(None, max_length=255)

    # Page / attribution
    page_path: Optional[str] = None
    page_url: Optional[HttpUrl] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None

    # Behavioural
    session_duration: Optional[float] = Field(None, ge=0)
    pages_viewed: Optional[int] = Field(None, ge=0)
    scroll_depth: Optional[float] = Field(None, ge=0, le=100)
    session_count: Optional[int] = Field(None, ge=0)

    # Firmographic / form
    form_type: Optional[str] = None
    company_size: Optional[Union[int, str]] = None
    industry: Optional[str] = None
    job_title: Optional[str] = None

    # Client context
    ip_address: Optional[IPvAnyAddress] = None
    user_agent: Optional[str] = None

    @field_validator("phone")
    @classmethod
    def validate_phone_has_digits(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and not any(ch.isdigit() for ch in value):
            raise ValueError("phone must contain digits")
        return value


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AppliedRuleOut(_CamelModel):
    rule_id: str
    field: str
    points: int


class ScoringBreakdown(_CamelModel):
    raw_score: int
    normalized_score: int = Field(..., ge=0, le=100)
    multiplier: float = Field(..., ge=0.1, le=2.0)
    applied_rules: List[AppliedRuleOut] = Field(default_factory=list)


class ValueBreakdown(_CamelModel):
    base_value: float
    adjusted_value: float
    currency: str
    segment: Optional[str] = None


class MetaCapiQueueStatus(_CamelModel):
    queued: bool


class GoogleAdsQueueStatus(_CamelModel):
    queued: bool
    gclid_captured: bool


class PlatformStatus(_CamelModel):
    """Delivery is asynchronous: this only says whether a job was queued."""

    meta_capi: MetaCapiQueueStatus
    google_ads: GoogleAdsQueueStatus


class ScoreLeadResponse(_CamelModel):
    """Response body returned after an event is scored, valued and stored."""

    success: bool = True
    lead_id: UUID
    event_id: str
    scoring: ScoringBreakdown
    value: ValueBreakdown
    platform_status: PlatformStatus
    processing_time_ms: float
