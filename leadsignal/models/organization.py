from sqlalchemy import ARRAY, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from leadsignal.models.base import Base


class Organization(Base):
    """Tenant that owns funnels, scoring rules, integrations and leads.

    Organisation CRUD lives outside this service; rows are read here
    only to resolve API keys and configuration.
    """

    __tablename__ = "organizations"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    name = Column(String(200), nullable=False)
    slug = Column(String(100), nullable=False, unique=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    api_keys = relationship(
        "ApiKey", back_populates="organization", cascade="all, delete-orphan"
    )


class ApiKey(Base):
    """Webhook credential.  Only the SHA-256 hash of the key is stored."""

    __tablename__ = "api_keys"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    name = Column(String(100), nullable=False)
    key_hash = Column(String(64), nullable=False, unique=True)
    scopes = Column(ARRAY(String), nullable=False, server_default="{}")
    expires_at = Column(DateTime(timezone=True))
    last_used_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    organization = relationship("Organization", back_populates="api_keys")
