from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.sql import func

from leadsignal.models.base import Base


class Funnel(Base):
    """Ordered conversion funnel.

    ``steps`` is a JSONB list as saved by the funnel builder UI, one
    object per step with ``id``, ``name``, ``order``, ``conversionRate``,
    ``monthlyVolume``, ``isTrackable`` and ``eventName``.  The default
    funnel is the one used to value webhook events.
    """

    __tablename__ = "funnels"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(String(200), nullable=False)
    is_default = Column(Boolean, nullable=False, server_default=text("false"))
    steps = Column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("ix_funnels_org_default", "organization_id", "is_default"),)


class BusinessMetrics(Base):
    """Versioned LTV / CAC / margin figures.

    Each organisation has exactly one *current* record, the one with
    ``effective_to IS NULL``; older versions keep their date range.
    """

    __tablename__ = "business_metrics"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    ltv = Column(Numeric(14, 2), nullable=False)
    ltv_cac_ratio = Column(Numeric(8, 2), nullable=False)
    gross_margin = Column(Numeric(5, 2), nullable=False, server_default=text("100"))
    currency = Column(String(3), nullable=False, server_default="AUD")
    effective_from = Column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    effective_to = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint("ltv > 0", name="ck_metrics_ltv_positive"),
        CheckConstraint("ltv_cac_ratio >= 1", name="ck_metrics_ratio_min"),
        CheckConstraint(
            "gross_margin BETWEEN 0 AND 100", name="ck_metrics_gross_margin_range"
        ),
        # One current version per organisation
        Index(
            "uq_business_metrics_current",
            "organization_id",
            unique=True,
            postgresql_where=text("effective_to IS NULL"),
        ),
    )
