"""
Queue consumer base class.

A worker pulls jobs from one queue, waits for a rate-limit slot, parses the
payload into the queue's tagged union and runs the handler. Continuation
work (next cursor page, downstream jobs) is enqueued in ``on_completed``
before the job is acknowledged, so a failed enqueue retries the job instead
of silently ending a crawl. The job lock is extended in the background while
the handler runs; jobs left behind by a dead worker are recovered as failed
attempts before the next fetch.
"""

from abc import ABC, abstractmethod
from typing import Optional
import asyncio
from pydantic import BaseModel, TypeAdapter, ValidationError
from core.exceptions import SyncException, JobError, UnknownJobTypeError
from pipeline.context import PipelineContext
from pipeline.queues.base import Job, JobQueue
import logging

logger = logging.getLogger(__name__)


class QueueWorker(ABC):
    """
    Base consumer for one queue.

    Subclasses set ``adapter`` and implement ``process``; they may override
    ``on_completed`` (continuations) and ``on_failed`` (terminal-failure
    bookkeeping).

    Attributes:
        concurrency: Number of jobs processed in parallel by ``run``
        poll_interval: Seconds to wait when the queue is empty
    """

    adapter: TypeAdapter

    def __init__(
        self,
        ctx: PipelineContext,
        queue: JobQueue,
        concurrency: int = 1,
        poll_interval: Optional[float] = None,
    ):
        self.ctx = ctx
        self.queue = queue
        self.concurrency = max(1, concurrency)
        self.poll_interval = poll_interval if poll_interval is not None else ctx.settings.WORKER_POLL_INTERVAL

    @property
    def name(self) -> str:
        return self.queue.name

    def parse(self, job: Job) -> BaseModel:
        try:
            return self.adapter.validate_python(job.data)
        except ValidationError as e:
            error_class = UnknownJobTypeError if self._is_unknown_type(e) else JobError
            raise error_class(
                f"Invalid {job.name} payload",
                context={"queue": self.name, "job_type": job.name, "job_id": job.id},
                original_exception=e,
            )

    @staticmethod
    def _is_unknown_type(error: ValidationError) -> bool:
        for err in error.errors():
            if err["type"] in ("union_tag_invalid", "union_tag_not_found"):
                return True
            if err["type"] == "literal_error" and tuple(err["loc"][:1]) == ("job_type",):
                return True
        return False

    @abstractmethod
    async def process(self, job: Job, payload: BaseModel) -> BaseModel:
        """Run the handler for one job and return its typed result."""
        pass

    async def on_completed(self, job: Job, payload: BaseModel, result: BaseModel):
        """Continuation hook, runs before the job is acknowledged."""
        pass

    async def on_failed(self, job: Job, payload: Optional[BaseModel], error: Exception, will_retry: bool):
        """Runs after a failed attempt has been recorded."""
        pass

    async def run_once(self) -> Optional[Job]:
        """
        Process at most one job.

        Returns:
            The job (completed or failed), or None when the queue was empty
        """
        await self.handle_stalled()

        job = await self.queue.fetch_next()
        if job is None:
            return None

        await self.queue.acquire_slot()

        payload: Optional[BaseModel] = None
        heartbeat = asyncio.create_task(self._keep_lock(job))
        try:
            payload = self.parse(job)
            result = await self.process(job, payload)
            await self.on_completed(job, payload, result)
        except Exception as e:
            error = self._wrap(job, e)
            will_retry = await self.queue.fail(job, error)
            await self.on_failed(job, payload, error, will_retry)
            return job
        finally:
            heartbeat.cancel()
            await asyncio.gather(heartbeat, return_exceptions=True)

        await self.queue.complete(job, result.model_dump(mode="json") if result is not None else None)
        logger.debug(f"[{self.name}] Job {job.id} completed")
        return job

    async def handle_stalled(self) -> int:
        """
        Recover jobs whose worker died mid-processing and run ``on_failed``
        for them. Returns the number recovered.
        """
        recovered = await self.queue.recover_stalled()
        for job, error, will_retry in recovered:
            try:
                payload = self.adapter.validate_python(job.data)
            except ValidationError:
                payload = None
            await self.on_failed(job, payload, error, will_retry)
        return len(recovered)

    async def _keep_lock(self, job: Job):
        interval = self.queue.config.lock_duration / 2
        while True:
            await asyncio.sleep(interval)
            try:
                held = await self.queue.extend_lock(job)
            except Exception as e:
                logger.warning(f"[{self.name}] Could not extend the lock on job {job.id}: {str(e)}")
                continue
            if not held:
                logger.warning(f"[{self.name}] Lost the lock on job {job.id}")
                return

    def _wrap(self, job: Job, error: Exception) -> SyncException:
        if isinstance(error, JobError):
            return error
        context = {"queue": self.name, "job_type": job.name, "job_id": job.id}
        if isinstance(error, SyncException):
            context.update({k: v for k, v in error.context.items() if k != "error_timestamp"})
        message = error.message if isinstance(error, SyncException) else str(error)
        return JobError(f"{job.name} job failed: {message}", context=context, original_exception=error)

    async def drain(self, max_jobs: int = 1000) -> int:
        """Process ready jobs until the queue is empty. Returns the number processed."""
        processed = 0
        while processed < max_jobs:
            job = await self.run_once()
            if job is None:
                break
            processed += 1
        return processed

    async def _consume(self, slot: int, stop_event: asyncio.Event):
        while not stop_event.is_set():
            try:
                job = await self.run_once()
            except Exception as e:
                # Queue storage trouble (e.g. Redis down): back off and keep polling
                logger.error(f"[{self.name}] Worker {slot} loop error: {str(e)}")
                job = None

            if job is None:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

    async def run(self, stop_event: Optional[asyncio.Event] = None):
        """Consume the queue with ``concurrency`` parallel loops until stopped."""
        stop_event = stop_event or asyncio.Event()
        logger.info(f"[{self.name}] Worker started (concurrency={self.concurrency})")

        await asyncio.gather(*(self._consume(slot, stop_event) for slot in range(self.concurrency)))

        logger.info(f"[{self.name}] Worker stopped")
