from typing import Any

from leadsignal.models.conversion_event import ConversionEvent
from leadsignal.models.lead import Lead
from leadsignal.repositories.base import BaseRepository


class LeadRepository(BaseRepository):
    """Writes for ``leads`` and their ``conversion_events``.

    Nothing here commits; the caller commits the lead and its event
    together so that either both rows exist or neither does.
    """

    async def create(self, **kwargs: Any) -> Lead:
        lead = Lead(**kwargs)
        self._db.add(lead)
        await self._db.flush()
        return lead

    async def create_event(self, lead: Lead, **kwargs: Any) -> ConversionEvent:
        event = ConversionEvent(lead_id=lead.id, **kwargs)
        self._db.add(event)
        await self._db.flush()
        return event
