from typing import Optional
from uuid import UUID

from leadsignal.models.dispatch_log import DispatchLog
from leadsignal.repositories.base import BaseRepository
from leadsignal.schemas.common import DispatchOutcome, Platform


class DispatchLogRepository(BaseRepository):
    """Append-only audit trail of dispatch attempts."""

    async def record(
        self,
        *,
        organization_id: UUID,
        conversion_event_id: UUID,
        platform: Platform,
        job_id: str,
        attempt: int,
        outcome: DispatchOutcome,
        integration_id: Optional[UUID] = None,
        error_code: Optional[str] = None,
        message: Optional[str] = None,
    ) -> DispatchLog:
        entry = DispatchLog(
            organization_id=organization_id,
            conversion_event_id=conversion_event_id,
            integration_id=integration_id,
            platform=platform.value,
            job_id=job_id,
            attempt=attempt,
            outcome=outcome.value,
            error_code=error_code,
            message=message[:1000] if message else None,
        )
        self._db.add(entry)
        return entry
