"""Dispatch job snapshot carried through the platform queues."""

from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from leadsignal.schemas.common import Platform


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    id: str  # client event id, the destinations' dedup key
    value: float
    currency: str
    occurred_at: datetime
    page_url: Optional[str] = None


class UserDataSnapshot(BaseModel):
    """Hashed match keys and click identifiers; never raw email or phone."""

    model_config = ConfigDict(frozen=True)

    email_hash: Optional[str] = None
    phone_hash: Optional[str] = None
    gclid: Optional[str] = None
    fbc: Optional[str] = None
    fbp: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    external_id: Optional[str] = None


class DispatchJob(BaseModel):
    """Immutable payload snapshot taken at enqueue time.

    Later edits to the lead or event never affect a job already in a
    queue.  ``attempts`` counts completed attempts; a retry produces a
    new instance via :meth:`next_attempt`.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str
    platform: Platform
    conversion_event_id: UUID
    organization_id: UUID
    lead_id: UUID
    event: EventSnapshot
    user_data: UserDataSnapshot
    attempts: int = 0
    enqueued_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def build(
        cls,
        platform: Platform,
        *,
        conversion_event_id: UUID,
        organization_id: UUID,
        lead_id: UUID,
        event: EventSnapshot,
        user_data: UserDataSnapshot,
    ) -> "DispatchJob":
        return cls(
            job_id=f"{platform.value}-{conversion_event_id}",
            platform=platform,
            conversion_event_id=conversion_event_id,
            organization_id=organization_id,
            lead_id=lead_id,
            event=event,
            user_data=user_data,
        )

    def next_attempt(self) -> "DispatchJob":
        return self.model_copy(update={"attempts": self.attempts + 1})
