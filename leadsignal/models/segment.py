from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Numeric, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from leadsignal.models.base import Base


class AudienceSegment(Base):
    """Label applied to a lead when its identification rule matches.

    Segments are informational: they never gate dispatch.
    """

    __tablename__ = "audience_segments"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(String(100), nullable=False)
    multiplier = Column(Numeric(5, 2), nullable=False, server_default=text("1"))
    identification_type = Column(String(20), nullable=False)
    identification_condition = Column(String(500), nullable=False)
    is_active = Column(Boolean, nullable=False, server_default=text("true"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
