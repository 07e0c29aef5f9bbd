import asyncio
import logging
from typing import Callable, Dict, List, Optional

import httpx
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from leadsignal.core.config import settings
from leadsignal.core.constants import PLATFORM_QUEUE_NAMES
from leadsignal.core.security import PayloadCipher
from leadsignal.schemas.common import Platform
from leadsignal.services.dispatch.google_ads import GoogleAdsClient, GoogleAdsDispatcher
from leadsignal.services.dispatch.meta_capi import MetaCapiClient, MetaCapiDispatcher
from leadsignal.services.dispatch.queue import RedisDispatchQueue
from leadsignal.services.dispatch.token_cache import TokenCache
from leadsignal.services.dispatch.worker import DispatchWorker

logger = logging.getLogger(__name__)


def create_redis_client() -> Redis:
    return Redis.from_url(settings.REDIS_URL, decode_responses=True)


def build_queues(redis: Redis) -> Dict[Platform, RedisDispatchQueue]:
    """One queue per destination platform."""
    return {
        platform: RedisDispatchQueue(redis, name)
        for platform, name in PLATFORM_QUEUE_NAMES.items()
    }


class DispatchRuntime:
    """Owns both platform workers and the HTTP client they share."""

    def __init__(
        self,
        redis: Redis,
        session_factory: Callable[..., AsyncSession],
        cipher: PayloadCipher,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        token_cache: Optional[TokenCache] = None,
    ) -> None:
        self.queues = build_queues(redis)
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient()
        self.token_cache = token_cache or TokenCache(
            refresh_margin=settings.TOKEN_REFRESH_MARGIN_SECONDS
        )

        meta = MetaCapiDispatcher(
            session_factory, cipher, MetaCapiClient(http_client=self._http)
        )
        google = GoogleAdsDispatcher(
            session_factory,
            cipher,
            GoogleAdsClient(self.token_cache, http_client=self._http),
        )
        self.workers: List[DispatchWorker] = [
            DispatchWorker(
                self.queues[Platform.META_CAPI],
                meta,
                backoff_seconds=settings.META_CAPI_BACKOFF_SECONDS,
            ),
            DispatchWorker(
                self.queues[Platform.GOOGLE_ADS],
                google,
                backoff_seconds=settings.GOOGLE_ADS_BACKOFF_SECONDS,
            ),
        ]
        self._tasks: List[asyncio.Task] = []

    def start(self) -> None:
        self._tasks = [asyncio.create_task(w.run()) for w in self.workers]
        logger.info("Dispatch workers scheduled: %s", ", ".join(w.name for w in self.workers))

    async def stop(self) -> None:
        await asyncio.gather(*(w.stop() for w in self.workers))
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        if self._owns_http:
            await self._http.aclose()
