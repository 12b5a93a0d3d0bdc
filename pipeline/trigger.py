"""
Cron trigger: enqueue polling jobs for automations whose interval elapsed
"""

from typing import List, Optional
from datetime import datetime, timedelta
import re
import uuid
from sqlalchemy import update
from models.automation import Automation
from pipeline.context import PipelineContext
from schemas.automation import AutomationSnapshot
import logging

logger = logging.getLogger(__name__)

INTERVAL_PATTERN = re.compile(r"^(\d+)(m|h)$")
UNIT_SECONDS = {"m": 60, "h": 3600}


def parse_interval(interval: Optional[str]) -> int:
    """
    "5m" → 300, "1h" → 3600.

    Returns 0 for anything unparseable; such automations are never due.
    """
    match = INTERVAL_PATTERN.match((interval or "").strip())
    if not match:
        return 0
    return int(match.group(1)) * UNIT_SECONDS[match.group(2)]


def is_due(snapshot: AutomationSnapshot, now: datetime) -> bool:
    seconds = parse_interval(snapshot.interval)
    if seconds <= 0:
        return False
    if snapshot.last_synced_at is None:
        return True

    last_synced_at = snapshot.last_synced_at
    if last_synced_at.tzinfo is not None:
        last_synced_at = last_synced_at.replace(tzinfo=None) - last_synced_at.utcoffset()
    return now > last_synced_at + timedelta(seconds=seconds)


class AutomationTrigger:
    """
    One tick of the polling fallback.

    Reads the Redis automation cache only; the database is touched to
    repopulate an empty cache and to stamp last_synced_at.
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    async def run(self, now: Optional[datetime] = None) -> List[int]:
        """
        Returns:
            Ids of the automations a job was enqueued for
        """
        now = now or datetime.utcnow()
        cache = self.ctx.automation_cache

        snapshots = await cache.get_all()
        if not snapshots:
            # Startup race: the cache may not be populated yet, retry next tick
            async with self.ctx.session_factory() as session:
                count = await cache.populate(session)
            logger.info(f"Trigger: automation cache was empty, repopulated {count} automations")
            return []

        triggered = []
        for snapshot in snapshots:
            if not snapshot.is_active or not is_due(snapshot, now):
                continue

            if await self.trigger(snapshot, now):
                triggered.append(snapshot.id)

        if triggered:
            logger.info(f"Trigger: enqueued polling jobs for automations {triggered}")
        return triggered

    async def trigger(self, snapshot: AutomationSnapshot, now: datetime) -> bool:
        pass_id = uuid.uuid4().hex
        queues = self.ctx.queues

        if snapshot.notion_account_id is not None:
            job = await queues.enqueue_sync(snapshot.user_id, snapshot.notion_account_id, pass_id)
        elif snapshot.google_sheets_account_id is not None:
            job = await queues.enqueue_list_spreadsheets(snapshot.google_sheets_account_id, pass_id)
        else:
            logger.warning(f"[automation {snapshot.id}] No source or destination account, nothing to poll")
            return False

        async with self.ctx.session_factory() as session:
            await session.execute(
                update(Automation)
                .where(Automation.id == snapshot.id)
                .values(last_synced_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        await self.ctx.automation_cache.add_or_update(snapshot.model_copy(update={"last_synced_at": now}))

        logger.info(
            f"[automation {snapshot.id}] Interval {snapshot.interval} elapsed, queued "
            f"{job.name if job else 'duplicate'} job {job.id if job else ''}".rstrip()
        )
        return True
