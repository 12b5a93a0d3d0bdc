"""
User-triggered bulk import
"""

from typing import Optional, Tuple
from datetime import datetime
from core.exceptions import ConfigurationError, EntityNotFoundError
from models.base import EntityType
from pipeline.automation_data import (
    load_automation,
    load_automation_data,
    load_notion_account,
    load_source_entity,
)
from pipeline.context import PipelineContext
from pipeline.import_tracker import ImportStateTracker
from pipeline.queues.base import Job
import logging

logger = logging.getLogger(__name__)


def make_import_key(started_at: datetime) -> str:
    """Distinguishes one import run from the next in job ids"""
    return started_at.strftime("%Y%m%dT%H%M%S%f")


async def start_bulk_import(ctx: PipelineContext, automation_id: int) -> Tuple[datetime, Optional[Job]]:
    """
    Validate the automation, enter ``importing`` and enqueue the first
    import page.

    Raises:
        AutomationNotFoundError: unknown automation
        ConfigurationError: mapping, accounts, spreadsheet or source missing
        ImportInProgressError: an import is already running

    Returns:
        (import_started_at, first import job)
    """
    async with ctx.session_factory() as session:
        automation = await load_automation(session, automation_id)

        # Fail fast on configuration problems instead of inside the workers
        await load_notion_account(session, automation)
        source = await load_source_entity(session, automation)
        if source.type != EntityType.DATABASE:
            raise EntityNotFoundError(
                f"Source entity of automation {automation_id} is not a database",
                context={"automation_id": automation_id, "notion_id": source.notion_id},
            )
        data = await load_automation_data(session, automation_id, automation=automation)
        if not data.mapping.columns:
            raise ConfigurationError(
                f"Column mapping of automation {automation_id} has no columns",
                context={"automation_id": automation_id},
            )

        started_at = await ImportStateTracker(session).begin(automation_id)

    import_key = make_import_key(started_at)
    job = await ctx.queues.enqueue_import(automation_id, source.notion_id, import_key)

    logger.info(
        f"[automation {automation_id}] Bulk import of database {source.notion_id} queued "
        f"(job {job.id if job else 'deduplicated'})"
    )
    return started_at, job
