"""
FastAPI application initialization
"""

from fastapi import FastAPI
from api.routes import health, webhooks, automations
from core.config import settings
from core.database import async_session_maker
from core.logging import setup_logging
from core.redis import create_redis
import logging
from api.middleware import RequestContextMiddleware
from pipeline.context import PipelineContext
from pipeline.scheduler import SyncScheduler
from pipeline.workers.pool import WorkerPool, build_workers

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Notion Sheets Sync API",
    description="Webhook ingress and bulk import for the Notion → Google Sheets sync pipeline",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(webhooks.router)
app.include_router(automations.router)


@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    setup_logging()
    logger.info("Starting Notion Sheets Sync API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    ctx = PipelineContext(async_session_maker, create_redis(settings), settings)
    app.state.ctx = ctx

    if settings.DISABLE_CACHE_POPULATION and not settings.is_production:
        logger.info("Automation cache population disabled")
    else:
        try:
            async with ctx.session_factory() as session:
                await ctx.automation_cache.populate(session)
        except Exception as e:
            # The first trigger tick repopulates an empty cache
            logger.error(f"Automation cache population failed: {str(e)}")

    # Start Scheduler
    app.state.scheduler = SyncScheduler(ctx)
    app.state.scheduler.start()

    app.state.worker_pool = None
    if settings.RUN_WORKERS_IN_PROCESS:
        app.state.worker_pool = WorkerPool(build_workers(ctx))
        app.state.worker_pool.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Notion Sheets Sync API")

    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.stop()

    pool = getattr(app.state, "worker_pool", None)
    if pool is not None:
        await pool.stop()

    ctx = getattr(app.state, "ctx", None)
    if ctx is not None:
        await ctx.redis.aclose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Notion Sheets Sync API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "webhooks": "/webhooks/notion",
            "imports": "/automations/{automation_id}/import"
        }
    }
