from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.sql import func

from leadsignal.core.constants import INTEGRATION_STATUS_CHECK_CLAUSE
from leadsignal.models.base import Base


class Integration(Base):
    """Per-organisation connection to an ad platform.

    ``credentials`` is a Fernet-encrypted JSON bundle (pixel id and
    access token for Meta; customer id and refresh token for Google
    Ads).  ``status`` is read by the account-management UI; dispatch
    flips it to ``ERROR`` on authentication failures.
    """

    __tablename__ = "integrations"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    type = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    status = Column(String(10), nullable=False, server_default="PENDING")
    credentials = Column(LargeBinary, nullable=False)
    settings = Column(JSONB, nullable=False, server_default=text("'{}'::jsonb"))
    last_sync_at = Column(DateTime(timezone=True))
    last_error = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint(INTEGRATION_STATUS_CHECK_CLAUSE, name="ck_integration_status"),
        Index("ix_integrations_org_type_status", "organization_id", "type", "status"),
    )
