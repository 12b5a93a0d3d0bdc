import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pipeline.context import PipelineContext
from pipeline.trigger import AutomationTrigger

logger = logging.getLogger(__name__)


class SyncScheduler:
    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.scheduler = AsyncIOScheduler()
        self.trigger = AutomationTrigger(ctx)

    async def run_trigger_job(self):
        """Job to run one cron trigger tick"""
        try:
            await self.trigger.run()
        except Exception as e:
            # A failed tick is retried by the next one
            logger.error(f"Scheduler: trigger tick failed - {e}")

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_trigger_job,
            trigger=IntervalTrigger(seconds=self.ctx.settings.TRIGGER_INTERVAL_SECONDS),
            id="automation_trigger",
            replace_existing=True,
            max_instances=1,
            coalesce=True
        )
        self.scheduler.start()
        logger.info("Sync Scheduler started")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Sync Scheduler stopped")
