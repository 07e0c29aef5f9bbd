from typing import List, Optional
from uuid import UUID

from sqlalchemy import select

from leadsignal.models.funnel import BusinessMetrics, Funnel
from leadsignal.models.scoring_rule import ScoringRule
from leadsignal.models.segment import AudienceSegment
from leadsignal.repositories.base import BaseRepository


class OrganizationConfigRepository(BaseRepository):
    """Read-only access to the configuration used to value an event.

    Funnels, metrics, rules and segments are edited elsewhere; this
    service only reads the current versions.
    """

    async def get_default_funnel(self, organization_id: UUID) -> Optional[Funnel]:
        """The organisation's default funnel, falling back to its oldest one."""
        result = await self._db.execute(
            select(Funnel)
            .where(Funnel.organization_id == organization_id)
            .order_by(Funnel.is_default.desc(), Funnel.created_at.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_current_metrics(
        self, organization_id: UUID
    ) -> Optional[BusinessMetrics]:
        """The single metrics version with ``effective_to IS NULL``."""
        result = await self._db.execute(
            select(BusinessMetrics).where(
                BusinessMetrics.organization_id == organization_id,
                BusinessMetrics.effective_to.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def get_enabled_rules(self, organization_id: UUID) -> List[ScoringRule]:
        result = await self._db.execute(
            select(ScoringRule)
            .where(
                ScoringRule.organization_id == organization_id,
                ScoringRule.enabled.is_(True),
            )
            .order_by(ScoringRule.order.asc())
        )
        return list(result.scalars().all())

    async def get_active_segments(
        self, organization_id: UUID
    ) -> List[AudienceSegment]:
        result = await self._db.execute(
            select(AudienceSegment)
            .where(
                AudienceSegment.organization_id == organization_id,
                AudienceSegment.is_active.is_(True),
            )
            .order_by(AudienceSegment.created_at.asc())
        )
        return list(result.scalars().all())
