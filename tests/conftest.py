from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator, Dict, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from leadsignal.core.security import PayloadCipher
from leadsignal.main import app
from leadsignal.schemas.common import DispatchStatus, Platform
from leadsignal.schemas.dispatch import DispatchJob, EventSnapshot, UserDataSnapshot


@pytest_asyncio.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Yield an ``httpx.AsyncClient`` wired to the FastAPI app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Return an ``AsyncMock`` that behaves like ``redis.asyncio.Redis``."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.expire = AsyncMock()
    redis.lpush = AsyncMock(return_value=1)
    redis.rpush = AsyncMock(return_value=1)
    redis.lrem = AsyncMock(return_value=1)
    redis.lrange = AsyncMock(return_value=[])
    redis.blmove = AsyncMock(return_value=None)
    redis.zadd = AsyncMock(return_value=1)
    redis.zrem = AsyncMock(return_value=1)
    redis.zscore = AsyncMock(return_value=None)
    redis.zrangebyscore = AsyncMock(return_value=[])
    redis.ping = AsyncMock()

    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    pipe.watch = AsyncMock()
    pipe.exists = AsyncMock(return_value=0)
    pipe.execute = AsyncMock(return_value=[True, 1])
    redis.pipeline = MagicMock(return_value=pipe)
    return redis


@pytest.fixture
def cipher() -> PayloadCipher:
    return PayloadCipher(PayloadCipher.generate_key())


@pytest.fixture
def job_factory():
    """Build a ``DispatchJob`` with sensible defaults."""

    def _make(
        platform: Platform = Platform.META_CAPI,
        *,
        event_name: str = "email_captured",
        event_id: str = "evt-123",
        value: float = 250.0,
        occurred_at: Optional[datetime] = None,
        **user_data,
    ) -> DispatchJob:
        return DispatchJob.build(
            platform,
            conversion_event_id=uuid4(),
            organization_id=uuid4(),
            lead_id=uuid4(),
            event=EventSnapshot(
                name=event_name,
                id=event_id,
                value=value,
                currency="AUD",
                occurred_at=occurred_at
                or datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
                page_url="https://example.com/signup",
            ),
            user_data=UserDataSnapshot(**user_data),
        )

    return _make


class FakeConversionEvents:
    """In-memory stand-in for ``ConversionEventRepository``.

    Honours the same guard as the real update: a status only leaves
    ``PENDING`` once.
    """

    def __init__(self) -> None:
        self.statuses: Dict[Tuple[UUID, Platform], DispatchStatus] = {}
        self.details: Dict[Tuple[UUID, Platform], Optional[str]] = {}
        self.columns: Dict[Tuple[UUID, Platform], dict] = {}

    async def get_platform_status(self, event_id, platform):
        return self.statuses.get((event_id, platform), DispatchStatus.PENDING)

    async def mark_status(self, event_id, platform, status, detail=None, **extra):
        key = (event_id, platform)
        if self.statuses.get(key, DispatchStatus.PENDING) is not DispatchStatus.PENDING:
            return False
        self.statuses[key] = status
        self.details[key] = detail
        self.columns[key] = extra
        return True


@pytest.fixture
def mock_session_factory() -> MagicMock:
    session = AsyncMock()
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    session.commit = AsyncMock()
    return MagicMock(return_value=session)


@pytest.fixture
def dispatch_repos():
    """Patch the repositories the dispatcher base builds per session."""
    events = FakeConversionEvents()
    integrations = AsyncMock()
    integrations.get_active = AsyncMock(return_value=None)
    integrations.update_status = AsyncMock()
    integrations.touch_sync = AsyncMock()
    logs = MagicMock()
    logs.record = AsyncMock()

    with (
        patch(
            "leadsignal.services.dispatch.base.ConversionEventRepository",
            return_value=events,
        ),
        patch(
            "leadsignal.services.dispatch.base.IntegrationRepository",
            return_value=integrations,
        ),
        patch(
            "leadsignal.services.dispatch.base.DispatchLogRepository",
            return_value=logs,
        ),
    ):
        yield SimpleNamespace(events=events, integrations=integrations, logs=logs)
