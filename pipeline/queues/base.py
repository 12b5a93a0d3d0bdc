"""
Redis-backed job queue with id deduplication, delayed retries and a
fixed-window rate limiter.

Key layout (``{prefix}:{queue}:...``):
    job:{id}         Job JSON; created with SET NX so an id is enqueued once
    wait             list of job ids ready to run (FIFO)
    delayed          sorted set of job ids scored by the epoch they become due
    active           sorted set of job ids scored by their lock deadline
    limiter:{window} jobs started in the current rate-limit window
    completed/failed counters

Job records have no TTL while waiting, delayed or active, so re-adding the
same id is rejected for the whole lifetime of the work. Finished records
expire after ``job_retention_seconds``.

A worker holds an active job under a lock of ``lock_duration`` seconds and
extends it while processing. A job whose lock expired (worker crashed or was
killed) is stalled: the next consumer records it as a failed attempt, so it
is retried or, once the attempt budget is spent, failed.
"""

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Tuple
from datetime import datetime
from enum import Enum
import redis.asyncio as aioredis
from core.exceptions import QueueError
import asyncio
import math
import time
import logging

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================

class RetryPolicy(BaseModel):
    """Attempt budget and backoff between attempts"""
    attempts: int = Field(3, ge=1)
    backoff: Literal["exponential", "fixed"] = "exponential"
    delay: float = Field(1.0, ge=0)  # seconds

    def delay_for(self, attempts_made: int) -> float:
        """Delay before the next attempt after ``attempts_made`` failures."""
        if self.backoff == "fixed":
            return self.delay
        return self.delay * (2 ** max(attempts_made - 1, 0))


class RateLimit(BaseModel):
    """At most ``max_jobs`` job starts per ``duration`` seconds, across all workers"""
    max_jobs: int = Field(..., ge=1)
    duration: float = Field(..., gt=0)


class QueueConfig(BaseModel):
    name: str
    rate_limit: Optional[RateLimit] = None
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    job_retention_seconds: int = 3600
    lock_duration: float = Field(30.0, gt=0)  # seconds


# ============================================================================
# Job
# ============================================================================

class JobStatus(str, Enum):
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class Job(BaseModel):
    """One unit of work; ``id`` is its idempotency key"""
    id: str
    name: str
    queue: str
    data: Dict[str, Any]
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    max_attempts: int = 3
    result: Optional[Dict[str, Any]] = None
    failed_reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    processed_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


# ============================================================================
# Queue
# ============================================================================

class JobQueue:
    """
    One named queue on Redis.

    Usage:
        queue = JobQueue(redis, QueueConfig(name="google-sheets"))
        await queue.add("write-row", payload, job_id="write-row-1-abc-2024...")

        job = await queue.fetch_next()
        await queue.complete(job, {"rows_created": 1})
    """

    def __init__(self, redis: aioredis.Redis, config: QueueConfig, prefix: str = "sheetsync"):
        self.redis = redis
        self.config = config
        self.prefix = prefix

    @property
    def name(self) -> str:
        return self.config.name

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, self.config.name) + parts)

    def _job_key(self, job_id: str) -> str:
        return self._key("job", job_id)

    async def _save(self, job: Job, finished: bool = False):
        if finished:
            await self.redis.set(
                self._job_key(job.id), job.model_dump_json(), ex=self.config.job_retention_seconds
            )
        else:
            await self.redis.set(self._job_key(job.id), job.model_dump_json())

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    async def add(self, name: str, data: Dict[str, Any], job_id: str) -> Optional[Job]:
        """
        Enqueue a job unless one with the same id already exists.

        Returns:
            The new Job, or None when the id was deduplicated
        """
        job = Job(
            id=job_id,
            name=name,
            queue=self.config.name,
            data=data,
            max_attempts=self.config.retry.attempts,
        )

        created = await self.redis.set(self._job_key(job_id), job.model_dump_json(), nx=True)
        if not created:
            logger.debug(f"[{self.name}] Job {job_id} already exists, skipping")
            return None

        await self.redis.rpush(self._key("wait"), job_id)
        logger.debug(f"[{self.name}] Enqueued {name} job {job_id}")
        return job

    async def get_job(self, job_id: str) -> Optional[Job]:
        raw = await self.redis.get(self._job_key(job_id))
        if raw is None:
            return None
        return Job.model_validate_json(raw)

    # ------------------------------------------------------------------
    # Consumer side
    # ------------------------------------------------------------------

    async def promote_delayed(self) -> int:
        """Move due delayed jobs back onto the wait list."""
        due = await self.redis.zrangebyscore(self._key("delayed"), "-inf", time.time())

        promoted = 0
        for job_id in due:
            # Only the consumer that wins the ZREM re-queues the job
            if await self.redis.zrem(self._key("delayed"), job_id):
                await self.redis.rpush(self._key("wait"), job_id)
                promoted += 1
        return promoted

    async def recover_stalled(self) -> List[Tuple[Job, QueueError, bool]]:
        """
        Fail every active job whose lock has expired.

        Returns:
            (job, error, will_retry) for each recovered job
        """
        expired = await self.redis.zrangebyscore(self._key("active"), "-inf", time.time())

        recovered = []
        for job_id in expired:
            # Only the consumer that wins the ZREM records the failed attempt
            if not await self.redis.zrem(self._key("active"), job_id):
                continue

            job = await self.get_job(job_id)
            if job is None:
                logger.warning(f"[{self.name}] Stalled job {job_id} has no record, dropping")
                continue

            error = QueueError(
                f"Job lock expired after {self.config.lock_duration:.0f}s without completion",
                context={"queue": self.name, "job_id": job_id, "processed_at": job.processed_at},
            )
            logger.warning(f"[{self.name}] Job {job_id} stalled, recording a failed attempt")
            will_retry = await self.fail(job, error)
            recovered.append((job, error, will_retry))
        return recovered

    async def fetch_next(self) -> Optional[Job]:
        """Pop the next ready job and lock it; None when nothing is ready."""
        await self.recover_stalled()
        await self.promote_delayed()

        while True:
            job_id = await self.redis.lpop(self._key("wait"))
            if job_id is None:
                return None

            job = await self.get_job(job_id)
            if job is None:
                logger.warning(f"[{self.name}] Job {job_id} has no record, dropping")
                continue

            job.status = JobStatus.ACTIVE
            job.processed_at = datetime.utcnow()
            await self._save(job)
            await self.redis.zadd(self._key("active"), {job_id: time.time() + self.config.lock_duration})
            return job

    async def extend_lock(self, job: Job) -> bool:
        """
        Push the job's lock deadline ``lock_duration`` seconds ahead.

        Returns:
            False when the job no longer holds a lock (it was recovered as
            stalled or already finished)
        """
        deadline = time.time() + self.config.lock_duration
        await self.redis.zadd(self._key("active"), {job.id: deadline}, xx=True)
        return await self.redis.zscore(self._key("active"), job.id) is not None

    async def complete(self, job: Job, result: Optional[Dict[str, Any]] = None) -> Job:
        job.attempts_made += 1
        job.status = JobStatus.COMPLETED
        job.result = result
        job.failed_reason = None
        job.finished_at = datetime.utcnow()

        await self._save(job, finished=True)
        await self.redis.zrem(self._key("active"), job.id)
        # A late completion of a job already recovered as stalled wins over its retry
        await self.redis.zrem(self._key("delayed"), job.id)
        await self.redis.incr(self._key("completed"))
        return job

    async def fail(self, job: Job, error: BaseException) -> bool:
        """
        Record a failed attempt.

        Returns:
            True when the job was scheduled for another attempt, False when
            the attempt budget is exhausted and the job is now failed
        """
        job.attempts_made += 1
        job.failed_reason = str(error)[:2000]

        await self.redis.zrem(self._key("active"), job.id)

        if job.attempts_made < self.config.retry.attempts:
            delay = self.config.retry.delay_for(job.attempts_made)
            job.status = JobStatus.DELAYED
            await self._save(job)
            await self.redis.zadd(self._key("delayed"), {job.id: time.time() + delay})

            logger.warning(
                f"[{self.name}] Job {job.id} failed (attempt {job.attempts_made}/"
                f"{self.config.retry.attempts}), retrying in {delay:.1f}s: {job.failed_reason}"
            )
            return True

        job.status = JobStatus.FAILED
        job.finished_at = datetime.utcnow()
        await self._save(job, finished=True)
        await self.redis.incr(self._key("failed"))

        logger.error(
            f"[{self.name}] Job {job.id} failed permanently after {job.attempts_made} attempts: "
            f"{job.failed_reason}"
        )
        return False

    async def acquire_slot(self):
        """
        Block until the queue's rate limit allows another job to start.

        Fixed window: INCR a per-window counter; when the window is full,
        sleep until the next one.
        """
        limit = self.config.rate_limit
        if limit is None:
            return

        while True:
            now = time.time()
            window = int(now // limit.duration)
            key = self._key("limiter", str(window))

            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, math.ceil(limit.duration) + 1)
            if count <= limit.max_jobs:
                return

            wait = (window + 1) * limit.duration - now
            logger.debug(f"[{self.name}] Rate limit reached, waiting {wait:.2f}s")
            await asyncio.sleep(max(wait, 0.01))

    async def get_counts(self) -> Dict[str, int]:
        waiting = await self.redis.llen(self._key("wait"))
        delayed = await self.redis.zcard(self._key("delayed"))
        active = await self.redis.zcard(self._key("active"))
        completed = await self.redis.get(self._key("completed"))
        failed = await self.redis.get(self._key("failed"))

        return {
            "waiting": waiting,
            "delayed": delayed,
            "active": active,
            "completed": int(completed or 0),
            "failed": int(failed or 0),
        }
