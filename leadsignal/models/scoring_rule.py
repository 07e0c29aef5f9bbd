from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.sql import func

from leadsignal.core.constants import SCORING_CATEGORY_CHECK_CLAUSE
from leadsignal.models.base import Base


class ScoringRule(Base):
    """Database-driven scoring rule.

    ``condition`` is stored as ``operator:operand`` (for example
    ``equals:business`` or ``in_list:saas,fintech``) and is parsed once
    when rules are loaded.  ``order`` only affects the order of the
    applied-rules trace, never the total.
    """

    __tablename__ = "scoring_rules"
    id = Column(
        UUID(as_uuid=True), primary_key=True, server_default=func.gen_random_uuid()
    )
    organization_id = Column(
        UUID(as_uuid=True),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
    )
    category = Column(String(20), nullable=False)
    field = Column(String(100), nullable=False)
    condition = Column(String(500), nullable=False)
    points = Column(Integer, nullable=False)
    enabled = Column(Boolean, nullable=False, server_default=text("true"))
    order = Column(Integer, nullable=False, server_default=text("0"))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint("points BETWEEN -100 AND 100", name="ck_scoring_points_range"),
        CheckConstraint(SCORING_CATEGORY_CHECK_CLAUSE, name="ck_scoring_category"),
        Index("ix_scoring_rules_org_enabled", "organization_id", "enabled"),
    )
