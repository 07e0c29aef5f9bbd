import logging
import time
from typing import Callable, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError

from leadsignal.core.config import settings
from leadsignal.schemas.dispatch import DispatchJob

logger = logging.getLogger(__name__)

_KEY_PREFIX = "dispatch"


class RedisDispatchQueue:
    """Durable at-least-once job queue on plain Redis structures.

    Per queue name::

        dispatch:<name>:job:<id>   JSON job record (dedup on WATCH + MULTI)
        dispatch:<name>:ready      list, producers LPUSH, consumers pop RIGHT
        dispatch:<name>:processing list of claimed ids
        dispatch:<name>:leases     zset id -> lease deadline
        dispatch:<name>:delayed    zset id -> time the retry becomes due
        dispatch:<name>:failed     zset id -> time it failed
        dispatch:<name>:reason:<id> failure reason

    A claimed job stays in ``processing`` until it is acked, retried or
    failed.  If the consumer dies its lease runs out and
    :meth:`requeue_expired` hands the job to another consumer.
    """

    def __init__(
        self,
        redis: Redis,
        name: str,
        *,
        visibility_timeout: Optional[int] = None,
        completed_retention: Optional[int] = None,
        failed_retention: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis = redis
        self.name = name
        self._visibility_timeout = (
            visibility_timeout
            if visibility_timeout is not None
            else settings.DISPATCH_VISIBILITY_TIMEOUT_SECONDS
        )
        self._completed_retention = (
            completed_retention
            if completed_retention is not None
            else settings.DISPATCH_COMPLETED_RETENTION_SECONDS
        )
        self._failed_retention = (
            failed_retention
            if failed_retention is not None
            else settings.DISPATCH_FAILED_RETENTION_SECONDS
        )
        self._clock = clock

        base = f"{_KEY_PREFIX}:{name}"
        self._ready_key = f"{base}:ready"
        self._processing_key = f"{base}:processing"
        self._leases_key = f"{base}:leases"
        self._delayed_key = f"{base}:delayed"
        self._failed_key = f"{base}:failed"
        self._job_prefix = f"{base}:job:"
        self._reason_prefix = f"{base}:reason:"

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def enqueue(self, job: DispatchJob) -> bool:
        """Add *job* unless a job with the same id already exists.

        Returns ``True`` when the job was queued, ``False`` when it was a
        duplicate (still queued, in flight, or completed within the
        retention window).
        """
        job_key = self._job_key(job.job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(job_key)
                if await pipe.exists(job_key):
                    logger.info(
                        "Job %s already queued on %s; skipping", job.job_id, self.name
                    )
                    return False
                # Record and ready entry are written together or not at all
                pipe.multi()
                pipe.set(job_key, job.model_dump_json())
                pipe.lpush(self._ready_key, job.job_id)
                await pipe.execute()
            except WatchError:
                logger.info(
                    "Job %s was queued concurrently on %s; skipping",
                    job.job_id,
                    self.name,
                )
                return False
        logger.info("Queued job %s on %s", job.job_id, self.name)
        return True

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def claim(self, timeout: float) -> Optional[DispatchJob]:
        """Block up to *timeout* seconds for the next ready job."""
        job_id = await self._redis.blmove(
            self._ready_key, self._processing_key, timeout, "RIGHT", "LEFT"
        )
        if job_id is None:
            return None

        await self._redis.zadd(
            self._leases_key, {job_id: self._clock() + self._visibility_timeout}
        )
        raw = await self._redis.get(self._job_key(job_id))
        if raw is None:
            logger.warning("Job record %s missing on %s; dropping", job_id, self.name)
            await self._release(job_id)
            return None
        return DispatchJob.model_validate_json(raw)

    async def ack(self, job: DispatchJob) -> None:
        """Mark *job* done; its record is kept for the dedup window."""
        await self._release(job.job_id)
        await self._redis.expire(self._job_key(job.job_id), self._completed_retention)

    async def retry(self, job: DispatchJob, delay: float) -> None:
        """Store the updated *job* and make it due again after *delay* seconds."""
        await self._redis.set(self._job_key(job.job_id), job.model_dump_json())
        await self._redis.zadd(self._delayed_key, {job.job_id: self._clock() + delay})
        await self._release(job.job_id)

    async def fail(self, job: DispatchJob, reason: str) -> None:
        """Park *job* in the failed set; it is never delivered again."""
        now = self._clock()
        await self._redis.set(self._job_key(job.job_id), job.model_dump_json())
        await self._redis.zadd(self._failed_key, {job.job_id: now})
        await self._redis.set(
            f"{self._reason_prefix}{job.job_id}", reason, ex=self._failed_retention
        )
        await self._redis.expire(self._job_key(job.job_id), self._failed_retention)
        await self._release(job.job_id)

    async def _release(self, job_id: str) -> None:
        await self._redis.lrem(self._processing_key, 0, job_id)
        await self._redis.zrem(self._leases_key, job_id)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def promote_due(self) -> int:
        """Move delayed jobs whose backoff has elapsed back to ready."""
        due = await self._redis.zrangebyscore(self._delayed_key, "-inf", self._clock())
        promoted = 0
        for job_id in due:
            # ZREM decides which maintenance loop owns the move
            if await self._redis.zrem(self._delayed_key, job_id):
                await self._redis.lpush(self._ready_key, job_id)
                promoted += 1
        return promoted

    async def requeue_expired(self) -> int:
        """Return claimed jobs whose lease ran out to the front of ready."""
        now = self._clock()
        requeued = 0
        for job_id in await self._redis.lrange(self._processing_key, 0, -1):
            deadline = await self._redis.zscore(self._leases_key, job_id)
            if deadline is None:
                # Claimed but not yet leased, or the claimer died in between
                await self._redis.zadd(
                    self._leases_key,
                    {job_id: now + self._visibility_timeout},
                    nx=True,
                )
                continue
            if deadline > now:
                continue
            if await self._redis.lrem(self._processing_key, 1, job_id):
                await self._redis.zrem(self._leases_key, job_id)
                await self._redis.rpush(self._ready_key, job_id)
                logger.warning("Lease expired for job %s on %s; requeued", job_id, self.name)
                requeued += 1
        return requeued

    async def purge_failed(self) -> int:
        """Drop failed entries older than the failed-job retention."""
        cutoff = self._clock() - self._failed_retention
        return await self._redis.zremrangebyscore(self._failed_key, "-inf", cutoff)

    async def failure_reason(self, job_id: str) -> Optional[str]:
        return await self._redis.get(f"{self._reason_prefix}{job_id}")

    async def stats(self) -> Dict[str, int]:
        return {
            "waiting": await self._redis.llen(self._ready_key),
            "active": await self._redis.llen(self._processing_key),
            "delayed": await self._redis.zcard(self._delayed_key),
            "failed": await self._redis.zcard(self._failed_key),
        }
