"""
notion-page-fetch worker: refresh one page in the entity cache and hand it
to the destination writer
"""

from pydantic import BaseModel
from pipeline.automation_data import load_automation, load_notion_account
from pipeline.cache.entity_cache import EntityCache
from pipeline.queues.base import Job
from pipeline.queues.definitions import GOOGLE_SHEETS_QUEUE, MAPPING_SYNC_QUEUE
from pipeline.workers.base import QueueWorker
from schemas.jobs import FetchPageJobResult, page_fetch_adapter
import logging

logger = logging.getLogger(__name__)


class PageFetchWorker(QueueWorker):
    adapter = page_fetch_adapter

    async def process(self, job: Job, payload: BaseModel) -> FetchPageJobResult:
        automation_id = payload.automation_id

        async with self.ctx.session_factory() as session:
            automation = await load_automation(session, automation_id)
            account = await load_notion_account(session, automation)

            async with self.ctx.notion_client_factory(account.access_token) as client:
                page = await client.retrieve_page(payload.page_id)

            await EntityCache(session).upsert(
                [page], account_id=account.id, workspace_id=account.workspace_id
            )
            use_row_mapping = automation.use_row_mapping

        version = page.get("last_edited_time") or payload.event_timestamp

        if use_row_mapping:
            downstream_queue = MAPPING_SYNC_QUEUE
            downstream = await self.ctx.queues.enqueue_mapping_sync(
                automation_id,
                "incremental",
                version,
                page_id=payload.page_id,
                event_type=payload.event_type,
            )
        else:
            downstream_queue = GOOGLE_SHEETS_QUEUE
            downstream = await self.ctx.queues.enqueue_write_row(
                automation_id, payload.page_id, payload.event_type, version=version
            )

        logger.info(
            f"[automation {automation_id}] Fetched page {payload.page_id} ({payload.event_type}), "
            f"{downstream_queue} job {downstream.id if downstream else 'deduplicated'}"
        )
        return FetchPageJobResult(
            page_id=payload.page_id,
            downstream_queue=downstream_queue,
            downstream_job_id=downstream.id if downstream else None,
        )
