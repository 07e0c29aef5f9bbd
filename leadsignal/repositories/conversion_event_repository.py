from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select, update

from leadsignal.models.conversion_event import ConversionEvent
from leadsignal.repositories.base import BaseRepository
from leadsignal.schemas.common import DispatchStatus, Platform

# Platform -> (status column, detail column, sent-at column)
_STATUS_COLUMNS = {
    Platform.META_CAPI: ("meta_status", "meta_status_detail", "meta_sent_at"),
    Platform.GOOGLE_ADS: ("google_status", "google_status_detail", "google_sent_at"),
}


class ConversionEventRepository(BaseRepository):
    """Per-platform delivery state of ``conversion_events``."""

    async def get_platform_status(
        self, event_id: UUID, platform: Platform
    ) -> Optional[DispatchStatus]:
        status_col = getattr(ConversionEvent, _STATUS_COLUMNS[platform][0])
        result = await self._db.execute(
            select(status_col).where(ConversionEvent.id == event_id)
        )
        value = result.scalar_one_or_none()
        return DispatchStatus(value) if value is not None else None

    async def mark_status(
        self,
        event_id: UUID,
        platform: Platform,
        status: DispatchStatus,
        detail: Optional[str] = None,
        **extra: Any,
    ) -> bool:
        """Move a platform status out of ``PENDING``.

        The update is guarded on the current value being ``PENDING`` so a
        status is only ever written once; returns ``False`` when another
        delivery of the same job got there first.
        """
        status_name, detail_name, sent_at_name = _STATUS_COLUMNS[platform]
        values: Dict[str, Any] = {status_name: status.value, detail_name: detail}
        if status is DispatchStatus.SENT:
            values[sent_at_name] = datetime.now(timezone.utc)
        values.update(extra)

        status_col = getattr(ConversionEvent, status_name)
        result = await self._db.execute(
            update(ConversionEvent)
            .where(
                ConversionEvent.id == event_id,
                status_col == DispatchStatus.PENDING.value,
            )
            .values(**values)
        )
        return result.rowcount > 0
