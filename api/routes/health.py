"""
Health check endpoint with database, Redis and queue status
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db, get_context
from pipeline.context import PipelineContext
from schemas.api import HealthCheckResponse, QueueCounts
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    ctx: PipelineContext = Depends(get_context)
):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Redis connectivity status
    - Job counts per queue
    """

    # Check database connectivity
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    # Check Redis and read queue counts
    redis_connected = False
    queues = {}

    try:
        await ctx.redis.ping()
        redis_connected = True

        counts = await ctx.queues.get_counts()
        queues = {name: QueueCounts(**values) for name, values in counts.items()}
    except Exception as e:
        logger.error(f"Redis connection failed: {str(e)}")

    # Status calculation is handled by the validator in HealthCheckResponse
    return HealthCheckResponse(
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        redis_connected=redis_connected,
        queues=queues
    )
