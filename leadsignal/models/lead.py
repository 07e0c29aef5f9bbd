from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from leadsignal.models.base import Base


class Lead(Base):
    """A scored prospect, created exactly once per successful webhook call.

    Email and phone are only ever stored as SHA-256 match keys; the raw
    request PII lives in ``raw_data`` as a Fernet-encrypted blob.
    ``score`` is the raw rule total, ``normalized_score`` the 0–100 clamp
    and ``value`` the multiplier-adjusted monetary value.
    """

    __tablename__ = "leads"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    email_hash = Column(String(64))
    phone_hash = Column(String(64))
    external_id = Column(String(255))
    score = Column(Integer, nullable=False, server_default=text("0"))
    normalized_score = Column(Integer, nullable=False, server_default=text("0"))
    multiplier = Column(Numeric(4, 2), nullable=False)
    value = Column(Numeric(14, 4), nullable=False)
    segment = Column(String(100))
    signals = Column(JSONB, nullable=False, server_default=text("'[]'::jsonb"))
    raw_data = Column(LargeBinary)
    source = Column(String(255))
    medium = Column(String(255))
    campaign = Column(String(255))
    gclid = Column(String(255))
    fbc = Column(String(255))
    fbp = Column(String(255))
    ip_address = Column(String(45))
    user_agent = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    events = relationship(
        "ConversionEvent", back_populates="lead", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "normalized_score BETWEEN 0 AND 100", name="ck_lead_normalized_score"
        ),
        CheckConstraint(
            "multiplier BETWEEN 0.1 AND 2.0", name="ck_lead_multiplier_range"
        ),
        Index("ix_leads_org_created", "organization_id", "created_at"),
    )
