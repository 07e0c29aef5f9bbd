import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

# Returns (access_token, expires_in_seconds)
TokenFetcher = Callable[[], Awaitable[Tuple[str, float]]]


class TokenCache:
    """Keyed access-token cache with coalesced refresh.

    A token is served while more than ``refresh_margin`` seconds of
    validity remain; tokens issued with a lifetime under twice the margin
    are refreshed at half their lifetime instead.  When it needs
    refreshing, the first caller starts one refresh task for that key and
    every concurrent caller awaits the same task.  Waiters await it
    through :func:`asyncio.shield`, so a cancelled waiter never cancels
    the refresh the others depend on.
    No lock is held while the fetch is in progress.
    """

    def __init__(
        self,
        refresh_margin: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._refresh_margin = refresh_margin
        self._clock = clock
        self._entries: Dict[str, Tuple[str, float]] = {}
        self._inflight: Dict[str, "asyncio.Task[str]"] = {}

    def peek(self, key: str) -> Optional[str]:
        """The cached token for *key* if it is still fresh enough to use."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        token, refresh_at = entry
        if self._clock() >= refresh_at:
            return None
        return token

    async def get_token(self, key: str, fetch: TokenFetcher) -> str:
        token = self.peek(key)
        if token is not None:
            return token

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._refresh(key, fetch))
            self._inflight[key] = task
        return await asyncio.shield(task)

    async def _refresh(self, key: str, fetch: TokenFetcher) -> str:
        try:
            token, expires_in = await fetch()
            lifetime = float(expires_in)
            margin = min(self._refresh_margin, lifetime / 2)
            self._entries[key] = (token, self._clock() + lifetime - margin)
            logger.debug("Refreshed access token for %s (expires in %ss)", key, expires_in)
            return token
        finally:
            self._inflight.pop(key, None)

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
