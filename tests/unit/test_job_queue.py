"""
Unit tests for the Redis job queue and queue definitions
"""

import pytest
from core.exceptions import JobError, QueueError
from pipeline.queues.base import JobQueue, JobStatus, QueueConfig, RateLimit, RetryPolicy
from pipeline.queues.definitions import (
    GOOGLE_SHEETS_QUEUE,
    MAPPING_SYNC_QUEUE,
    NOTION_PAGE_FETCH_QUEUE,
    NOTION_SYNC_QUEUE,
    build_queue_configs,
)


@pytest.fixture
def queue(redis_client):
    return JobQueue(
        redis_client,
        QueueConfig(name="test-queue", retry=RetryPolicy(attempts=2, delay=0)),
        prefix="test",
    )


class TestRetryPolicy:

    def test_exponential_backoff(self):
        policy = RetryPolicy(attempts=3, backoff="exponential", delay=2)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2, 4, 8]

    def test_fixed_backoff(self):
        policy = RetryPolicy(attempts=3, backoff="fixed", delay=1)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1, 1, 1]


class TestQueueDefinitions:

    def test_four_queues_with_limits(self, test_settings):
        configs = build_queue_configs(test_settings)

        assert set(configs) == {NOTION_SYNC_QUEUE, NOTION_PAGE_FETCH_QUEUE, GOOGLE_SHEETS_QUEUE, MAPPING_SYNC_QUEUE}
        assert configs[NOTION_SYNC_QUEUE].rate_limit.max_jobs == 3
        assert configs[NOTION_SYNC_QUEUE].rate_limit.duration == 1
        assert configs[GOOGLE_SHEETS_QUEUE].rate_limit.max_jobs == 300
        assert configs[GOOGLE_SHEETS_QUEUE].rate_limit.duration == 60
        assert all(config.retry.attempts == 3 for config in configs.values())
        assert configs[NOTION_SYNC_QUEUE].retry.delay == 2


class TestJobQueue:

    @pytest.mark.asyncio
    async def test_add_deduplicates_by_job_id(self, queue):
        first = await queue.add("write-row", {"job_type": "write-row"}, "job-1")
        second = await queue.add("write-row", {"job_type": "write-row"}, "job-1")

        assert first is not None
        assert second is None
        assert (await queue.get_counts())["waiting"] == 1

    @pytest.mark.asyncio
    async def test_fetch_is_fifo_and_marks_active(self, queue):
        await queue.add("a", {}, "job-a")
        await queue.add("b", {}, "job-b")

        job = await queue.fetch_next()
        assert job.id == "job-a"
        assert job.status == JobStatus.ACTIVE
        assert (await queue.get_counts())["active"] == 1

        assert (await queue.fetch_next()).id == "job-b"
        assert await queue.fetch_next() is None

    @pytest.mark.asyncio
    async def test_complete_stores_result(self, queue):
        await queue.add("a", {}, "job-a")
        job = await queue.fetch_next()

        await queue.complete(job, {"rows_created": 1})

        stored = await queue.get_job("job-a")
        assert stored.status == JobStatus.COMPLETED
        assert stored.result == {"rows_created": 1}
        assert stored.attempts_made == 1
        counts = await queue.get_counts()
        assert counts["completed"] == 1
        assert counts["active"] == 0

    @pytest.mark.asyncio
    async def test_completed_job_id_still_deduplicates(self, queue):
        await queue.add("a", {}, "job-a")
        await queue.complete(await queue.fetch_next())

        assert await queue.add("a", {}, "job-a") is None

    @pytest.mark.asyncio
    async def test_fail_retries_then_fails(self, queue):
        await queue.add("a", {}, "job-a")

        job = await queue.fetch_next()
        will_retry = await queue.fail(job, JobError("boom"))
        assert will_retry is True
        assert (await queue.get_job("job-a")).status == JobStatus.DELAYED

        # Zero delay: the retry is due immediately
        job = await queue.fetch_next()
        assert job.id == "job-a"
        assert job.attempts_made == 1

        will_retry = await queue.fail(job, JobError("boom again"))
        assert will_retry is False

        stored = await queue.get_job("job-a")
        assert stored.status == JobStatus.FAILED
        assert "boom again" in stored.failed_reason
        assert (await queue.get_counts())["failed"] == 1
        assert await queue.fetch_next() is None

    @pytest.mark.asyncio
    async def test_delayed_job_waits_for_backoff(self, redis_client):
        queue = JobQueue(
            redis_client, QueueConfig(name="slow", retry=RetryPolicy(attempts=3, delay=60)), prefix="test"
        )
        await queue.add("a", {}, "job-a")
        await queue.fail(await queue.fetch_next(), JobError("boom"))

        assert await queue.fetch_next() is None
        assert (await queue.get_counts())["delayed"] == 1

    @pytest.mark.asyncio
    async def test_rate_limit_allows_jobs_within_window(self, redis_client, monkeypatch):
        queue = JobQueue(
            redis_client, QueueConfig(name="limited", rate_limit=RateLimit(max_jobs=2, duration=3600)), prefix="test"
        )

        async def no_sleep(seconds):
            raise AssertionError("rate limiter should not wait")

        monkeypatch.setattr("pipeline.queues.base.asyncio.sleep", no_sleep)

        await queue.acquire_slot()
        await queue.acquire_slot()


async def expire_lock(queue, job_id):
    """Backdate the lock deadline, as if the worker holding the job had died"""
    await queue.redis.zadd(queue._key("active"), {job_id: 0})


class TestStalledJobs:

    @pytest.mark.asyncio
    async def test_live_lock_is_not_recovered(self, queue):
        await queue.add("a", {}, "job-a")
        await queue.fetch_next()

        assert await queue.recover_stalled() == []
        assert (await queue.get_counts())["active"] == 1

    @pytest.mark.asyncio
    async def test_expired_lock_is_retried(self, queue):
        await queue.add("a", {}, "job-a")
        await queue.fetch_next()
        await expire_lock(queue, "job-a")

        recovered = await queue.recover_stalled()

        assert len(recovered) == 1
        job, error, will_retry = recovered[0]
        assert job.id == "job-a"
        assert isinstance(error, QueueError)
        assert will_retry is True
        counts = await queue.get_counts()
        assert counts["active"] == 0
        assert counts["delayed"] == 1

        retried = await queue.fetch_next()
        assert retried.id == "job-a"
        assert retried.attempts_made == 1

    @pytest.mark.asyncio
    async def test_fetch_fails_job_that_stalls_on_every_attempt(self, queue):
        await queue.add("a", {}, "job-a")

        await queue.fetch_next()
        await expire_lock(queue, "job-a")
        assert (await queue.fetch_next()).id == "job-a"
        await expire_lock(queue, "job-a")

        # Second stall spends the two-attempt budget
        assert await queue.fetch_next() is None

        stored = await queue.get_job("job-a")
        assert stored.status == JobStatus.FAILED
        assert stored.attempts_made == 2
        assert "lock expired" in stored.failed_reason
        counts = await queue.get_counts()
        assert counts["active"] == 0
        assert counts["failed"] == 1

    @pytest.mark.asyncio
    async def test_extend_lock_moves_deadline(self, redis_client):
        queue = JobQueue(redis_client, QueueConfig(name="locked", lock_duration=60), prefix="test")
        await queue.add("a", {}, "job-a")
        job = await queue.fetch_next()
        await expire_lock(queue, "job-a")

        assert await queue.extend_lock(job) is True
        assert await queue.recover_stalled() == []

        await queue.complete(job)
        assert await queue.extend_lock(job) is False
        assert (await queue.get_counts())["active"] == 0
