import asyncio
import logging
from enum import Enum
from typing import List, Optional

from leadsignal.core.config import settings
from leadsignal.core.exceptions import TerminalDispatchError, TransientDispatchError
from leadsignal.schemas.common import DispatchStatus
from leadsignal.schemas.dispatch import DispatchJob
from leadsignal.services.dispatch.base import PlatformDispatcher
from leadsignal.services.dispatch.queue import RedisDispatchQueue

logger = logging.getLogger(__name__)

# How often the maintenance loop promotes delayed jobs and reclaims leases
_MAINTENANCE_INTERVAL_SECONDS: float = 1.0
# Failed-job pruning runs once per this many maintenance ticks
_PURGE_EVERY_TICKS: int = 3600


class AttemptState(str, Enum):
    RECEIVED = "RECEIVED"
    SKIPPED = "SKIPPED"
    DISPATCHED_OK = "DISPATCHED_OK"
    RETRYABLE_ERROR = "RETRYABLE_ERROR"
    TERMINAL_ERROR = "TERMINAL_ERROR"
    EXHAUSTED = "EXHAUSTED"


class DispatchWorker:
    """Bounded-concurrency consumer for one platform queue.

    ``concurrency`` consumer coroutines each process one job at a time,
    so at most that many destination calls are in flight; anything more
    waits in the queue.  One extra coroutine promotes due retries and
    reclaims jobs whose lease expired.
    """

    def __init__(
        self,
        queue: RedisDispatchQueue,
        dispatcher: PlatformDispatcher,
        *,
        concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: float = 1.0,
        poll_timeout: Optional[float] = None,
        maintenance_interval: float = _MAINTENANCE_INTERVAL_SECONDS,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._concurrency = concurrency or settings.DISPATCH_CONCURRENCY
        self._max_attempts = max_attempts or settings.DISPATCH_MAX_ATTEMPTS
        self._backoff_seconds = backoff_seconds
        self._poll_timeout = (
            poll_timeout
            if poll_timeout is not None
            else settings.DISPATCH_POLL_TIMEOUT_SECONDS
        )
        self._maintenance_interval = maintenance_interval
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def name(self) -> str:
        return self._queue.name

    def backoff_for(self, attempts: int) -> float:
        """Delay before the retry that follows attempt number *attempts*."""
        return self._backoff_seconds * (2 ** (attempts - 1))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run consumers and maintenance until :meth:`stop` is called."""
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"{self.name}-consumer-{i}")
            for i in range(self._concurrency)
        ]
        self._tasks.append(
            asyncio.create_task(self._maintain(), name=f"{self.name}-maintenance")
        )
        logger.info(
            "Dispatch worker %s started (concurrency=%d)", self.name, self._concurrency
        )
        try:
            await asyncio.gather(*self._tasks)
        finally:
            logger.info("Dispatch worker %s stopped", self.name)

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """Let in-flight jobs finish, then cancel whatever is left.

        A job cancelled mid-flight stays in ``processing`` and is
        redelivered once its lease expires.
        """
        self._stopping.set()
        if not self._tasks:
            return
        _, pending = await asyncio.wait(self._tasks, timeout=grace_seconds)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._tasks = []

    async def _consume(self, index: int) -> None:
        while not self._stopping.is_set():
            try:
                job = await self._queue.claim(self._poll_timeout)
            except Exception:
                logger.error(
                    "Consumer %s-%d failed to claim a job", self.name, index, exc_info=True
                )
                await asyncio.sleep(self._poll_timeout)
                continue
            if job is None:
                continue
            try:
                await self.process(job)
            except Exception:
                # Unsettled jobs come back once their lease expires
                logger.error(
                    "Consumer %s-%d failed to settle job %s",
                    self.name,
                    index,
                    job.job_id,
                    exc_info=True,
                )
                await asyncio.sleep(self._poll_timeout)

    async def _maintain(self) -> None:
        ticks = 0
        while not self._stopping.is_set():
            try:
                await self._queue.promote_due()
                await self._queue.requeue_expired()
                ticks += 1
                if ticks % _PURGE_EVERY_TICKS == 0:
                    await self._queue.purge_failed()
            except Exception:
                logger.error("Maintenance failed on %s", self.name, exc_info=True)
            try:
                await asyncio.wait_for(
                    self._stopping.wait(), timeout=self._maintenance_interval
                )
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    async def process(self, job: DispatchJob) -> AttemptState:
        """Run a single delivery attempt and settle the job in the queue."""
        logger.info(
            "Processing %s job %s (attempt %d)",
            self.name,
            job.job_id,
            job.attempts + 1,
        )
        try:
            status = await self._dispatcher.handle(job)
        except TerminalDispatchError as exc:
            logger.error(
                "Job %s failed permanently [%s]: %s",
                job.job_id,
                exc.error_code,
                exc.detail,
            )
            await self._queue.fail(job.next_attempt(), exc.detail)
            return AttemptState.TERMINAL_ERROR
        except TransientDispatchError as exc:
            return await self._retry_or_exhaust(job, exc)
        except Exception as exc:
            logger.error("Unexpected error processing job %s", job.job_id, exc_info=True)
            return await self._retry_or_exhaust(job, exc)

        await self._queue.ack(job)
        if status is DispatchStatus.SKIPPED:
            return AttemptState.SKIPPED
        return AttemptState.DISPATCHED_OK

    async def _retry_or_exhaust(
        self, job: DispatchJob, error: Exception
    ) -> AttemptState:
        next_job = job.next_attempt()
        if next_job.attempts < self._max_attempts:
            delay = self.backoff_for(next_job.attempts)
            logger.warning(
                "Job %s attempt %d failed, retrying in %.1fs: %s",
                job.job_id,
                next_job.attempts,
                delay,
                error,
            )
            await self._queue.retry(next_job, delay)
            return AttemptState.RETRYABLE_ERROR

        logger.error(
            "Job %s exhausted %d attempts: %s", job.job_id, next_job.attempts, error
        )
        try:
            await self._dispatcher.record_exhausted(job, error)
        except Exception:
            logger.error(
                "Could not record exhaustion for job %s", job.job_id, exc_info=True
            )
        await self._queue.fail(next_job, f"Retries exhausted: {error}")
        return AttemptState.EXHAUSTED
