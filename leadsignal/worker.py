"""Standalone dispatch worker process.

Run with ``python -m leadsignal.worker`` (or the ``leadsignal-worker``
script) when the API is started with ``RUN_DISPATCH_WORKERS=false``.
"""

import asyncio
import logging
import signal

from leadsignal.core.config import settings
from leadsignal.core.database import AsyncSessionLocal, engine
from leadsignal.core.security import PayloadCipher
from leadsignal.services.dispatch.runtime import DispatchRuntime, create_redis_client

logger = logging.getLogger(__name__)


async def run_workers() -> None:
    redis_client = create_redis_client()
    runtime = DispatchRuntime(redis_client, AsyncSessionLocal, PayloadCipher())

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    runtime.start()
    logger.info("Dispatch worker process started")
    try:
        await stop.wait()
    finally:
        logger.info("Shutting down dispatch workers")
        await runtime.stop()
        await redis_client.aclose()
        await engine.dispose()


def main() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL)
    asyncio.run(run_workers())


if __name__ == "__main__":
    main()
