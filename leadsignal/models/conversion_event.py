from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from leadsignal.core.constants import DISPATCH_STATUS_CHECK_CLAUSE
from leadsignal.models.base import Base


class ConversionEvent(Base):
    """A valued funnel event and its delivery state on each ad platform.

    ``event_id`` is the idempotency key forwarded to both destinations.
    Each platform has its own status column; a status only ever leaves
    ``PENDING`` once (to ``SENT``, ``SKIPPED`` or ``FAILED``).
    """

    __tablename__ = "conversion_events"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    lead_id = Column(
        UUID(as_uuid=True),
        ForeignKey("leads.id", ondelete="CASCADE"),
        nullable=False,
    )
    event_name = Column(String(100), nullable=False)
    event_id = Column(String(255), nullable=False)
    value = Column(Numeric(14, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    page_url = Column(Text)
    occurred_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Meta Conversions API
    meta_status = Column(String(10), nullable=False, server_default="PENDING")
    meta_status_detail = Column(String(255))
    meta_sent_at = Column(DateTime(timezone=True))
    meta_trace_id = Column(String(100))

    # Google Ads offline click conversions
    google_status = Column(String(10), nullable=False, server_default="PENDING")
    google_status_detail = Column(String(255))
    google_sent_at = Column(DateTime(timezone=True))
    google_uploaded_count = Column(Integer)

    lead = relationship("Lead", back_populates="events")

    __table_args__ = (
        CheckConstraint(
            DISPATCH_STATUS_CHECK_CLAUSE.format(col="meta_status"),
            name="ck_event_meta_status",
        ),
        CheckConstraint(
            DISPATCH_STATUS_CHECK_CLAUSE.format(col="google_status"),
            name="ck_event_google_status",
        ),
        Index("ix_conversion_events_lead_id", "lead_id"),
        Index("ix_conversion_events_event_id", "event_id"),
    )
