from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from leadsignal.models.base import Base


class DispatchLog(Base):
    """Audit entry for one dispatch attempt, read by the monitoring surface."""

    __tablename__ = "dispatch_logs"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(UUID(as_uuid=True), nullable=False)
    conversion_event_id = Column(
        UUID(as_uuid=True),
        ForeignKey("conversion_events.id", ondelete="CASCADE"),
        nullable=False,
    )
    integration_id = Column(
        UUID(as_uuid=True), ForeignKey("integrations.id", ondelete="SET NULL")
    )
    platform = Column(String(20), nullable=False)
    job_id = Column(String(100), nullable=False)
    attempt = Column(Integer, nullable=False)
    outcome = Column(String(20), nullable=False)
    error_code = Column(String(100))
    message = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_dispatch_logs_event", "conversion_event_id"),
        Index("ix_dispatch_logs_org_created", "organization_id", "created_at"),
    )
