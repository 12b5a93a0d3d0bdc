"""
Script to run the queue workers outside the API process
"""

import argparse
import asyncio
import signal
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from core.redis import create_redis
from pipeline.context import PipelineContext
from pipeline.queues.definitions import (
    NOTION_SYNC_QUEUE,
    NOTION_PAGE_FETCH_QUEUE,
    GOOGLE_SHEETS_QUEUE,
    MAPPING_SYNC_QUEUE,
)
from pipeline.workers.pool import WorkerPool, build_workers

logger = logging.getLogger(__name__)

QUEUE_CHOICES = [NOTION_SYNC_QUEUE, NOTION_PAGE_FETCH_QUEUE, GOOGLE_SHEETS_QUEUE, MAPPING_SYNC_QUEUE]


async def run_workers(queue_names):
    """Run workers for the selected queues until SIGINT/SIGTERM"""
    redis = create_redis(settings)
    ctx = PipelineContext(async_session_maker, redis, settings)
    pool = WorkerPool(build_workers(ctx, queue_names))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pool.stop_event.set)

    try:
        pool.start()
        await pool.wait()
    finally:
        await redis.aclose()
        await engine.dispose()
        logger.info("Workers shut down")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run pipeline queue workers")
    parser.add_argument(
        "--queue",
        action="append",
        choices=QUEUE_CHOICES,
        help="Queue to consume (repeatable, default: all)",
    )
    args = parser.parse_args()

    setup_logging()
    asyncio.run(run_workers(args.queue))
