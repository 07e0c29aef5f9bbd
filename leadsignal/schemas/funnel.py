"""Funnel configuration schemas (stored as JSONB by the funnel builder)."""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FunnelStep(BaseModel):
    """One step of a funnel, as saved in ``funnels.steps``."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    id: str
    name: str = ""
    order: int = Field(..., ge=0)
    conversion_rate: float = Field(..., ge=0, le=100)
    monthly_volume: float = Field(0, ge=0)
    is_trackable: bool = True
    event_name: str


class BusinessMetricsInput(BaseModel):
    """The subset of ``business_metrics`` the value model needs."""

    model_config = ConfigDict(frozen=True)

    ltv: float = Field(..., gt=0)
    ltv_cac_ratio: float = Field(..., gt=0)
    gross_margin: float = Field(100, ge=0, le=100)
    currency: str = "AUD"
