"""
Build and run one worker per queue
"""

from typing import Dict, Iterable, List, Optional
import asyncio
from pipeline.context import PipelineContext
from pipeline.queues.definitions import (
    NOTION_SYNC_QUEUE,
    NOTION_PAGE_FETCH_QUEUE,
    GOOGLE_SHEETS_QUEUE,
    MAPPING_SYNC_QUEUE,
)
from pipeline.workers.base import QueueWorker
from pipeline.workers.notion_sync import NotionSyncWorker
from pipeline.workers.page_fetch import PageFetchWorker
from pipeline.workers.google_sheets import GoogleSheetsWorker
from pipeline.workers.mapping_sync import MappingSyncWorker
import logging

logger = logging.getLogger(__name__)


def build_workers(ctx: PipelineContext, queue_names: Optional[Iterable[str]] = None) -> Dict[str, QueueWorker]:
    settings = ctx.settings
    queues = ctx.queues
    workers = {
        NOTION_SYNC_QUEUE: NotionSyncWorker(
            ctx, queues.notion_sync, concurrency=settings.NOTION_SYNC_CONCURRENCY
        ),
        NOTION_PAGE_FETCH_QUEUE: PageFetchWorker(
            ctx, queues.notion_page_fetch, concurrency=settings.NOTION_PAGE_FETCH_CONCURRENCY
        ),
        GOOGLE_SHEETS_QUEUE: GoogleSheetsWorker(
            ctx, queues.google_sheets, concurrency=settings.GOOGLE_SHEETS_CONCURRENCY
        ),
        MAPPING_SYNC_QUEUE: MappingSyncWorker(
            ctx, queues.mapping_sync, concurrency=settings.MAPPING_SYNC_CONCURRENCY
        ),
    }

    if queue_names is None:
        return workers

    selected = {}
    for name in queue_names:
        if name not in workers:
            raise ValueError(f"Unknown queue: {name}")
        selected[name] = workers[name]
    return selected


class WorkerPool:
    """
    Runs a set of workers as asyncio tasks until stopped.

    Usage:
        pool = WorkerPool(build_workers(ctx))
        pool.start()
        ...
        await pool.stop()
    """

    def __init__(self, workers: Dict[str, QueueWorker]):
        self.workers = workers
        self.stop_event = asyncio.Event()
        self.tasks: List[asyncio.Task] = []

    def start(self):
        self.stop_event.clear()
        self.tasks = [
            asyncio.create_task(worker.run(self.stop_event), name=f"worker-{name}")
            for name, worker in self.workers.items()
        ]
        logger.info(f"Worker pool started for queues: {', '.join(self.workers)}")

    async def wait(self):
        await asyncio.gather(*self.tasks)

    async def stop(self):
        self.stop_event.set()
        await asyncio.gather(*self.tasks, return_exceptions=True)
        self.tasks = []
        logger.info("Worker pool stopped")
