"""
notion-sync worker: account-wide search crawl (``sync``) and bulk import
of one database (``import``)
"""

from sqlalchemy import select, func
from pydantic import BaseModel
from typing import Optional
from core.exceptions import AccountNotFoundError, UnknownJobTypeError
from models.accounts import NotionAccount
from models.automation import Automation
from models.base import ImportStatus
from pipeline.automation_data import load_automation, load_notion_account
from pipeline.cache.entity_cache import EntityCache
from pipeline.import_tracker import ImportStateTracker
from pipeline.queues.base import Job
from pipeline.workers.base import QueueWorker
from schemas.jobs import (
    SyncJobData,
    ImportJobData,
    SyncJobResult,
    ImportJobResult,
    notion_sync_adapter,
)
from schemas.webhook import WebhookEventType
import logging

logger = logging.getLogger(__name__)


class NotionSyncWorker(QueueWorker):
    """
    Consumes the notion-sync queue.

    sync:   search one page of everything the account can see, upsert it
            into the entity cache, continue with the next cursor
    import: query one page of a database, cache the pages, enqueue a
            write-row per page (a mapping-sync job for row-mapped
            automations) plus write-headers on the first page, continue
            or finalize the import total
    """

    adapter = notion_sync_adapter

    async def process(self, job: Job, payload: BaseModel) -> BaseModel:
        if isinstance(payload, SyncJobData):
            return await self.sync(payload)
        elif isinstance(payload, ImportJobData):
            return await self.import_page(payload)
        raise UnknownJobTypeError(
            f"Unsupported job type for {self.name}: {job.name}",
            context={"queue": self.name, "job_id": job.id},
        )

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------

    async def sync(self, payload: SyncJobData) -> SyncJobResult:
        async with self.ctx.session_factory() as session:
            result = await session.execute(
                select(func.count()).select_from(Automation).where(
                    Automation.notion_account_id == payload.notion_account_id,
                    Automation.is_active.is_(True),
                )
            )
            if not result.scalar_one():
                logger.info(
                    f"[notion account {payload.notion_account_id}] No active automation, stopping sync crawl"
                )
                return SyncJobResult(skipped=True, reason="no_active_automation")

            account = await session.get(NotionAccount, payload.notion_account_id)
            if account is None:
                raise AccountNotFoundError(
                    f"Notion account {payload.notion_account_id} not found",
                    context={"notion_account_id": payload.notion_account_id},
                )

            async with self.ctx.notion_client_factory(account.access_token) as client:
                response = await client.search(start_cursor=payload.cursor)

            records = response.get("results") or []
            upserted = await EntityCache(session).upsert(
                records, account_id=account.id, workspace_id=account.workspace_id
            )

        next_cursor = response.get("next_cursor") if response.get("has_more") else None

        logger.info(
            f"[notion account {payload.notion_account_id}] Sync page cached {upserted} records "
            f"(has_more={bool(next_cursor)})"
        )
        return SyncJobResult(records_upserted=upserted, next_cursor=next_cursor, has_more=bool(next_cursor))

    # ------------------------------------------------------------------
    # import
    # ------------------------------------------------------------------

    async def import_page(self, payload: ImportJobData) -> ImportJobResult:
        automation_id = payload.automation_id
        row_limit = self.ctx.settings.IMPORT_ROW_LIMIT

        async with self.ctx.session_factory() as session:
            automation = await load_automation(session, automation_id)
            if automation.import_status != ImportStatus.IMPORTING:
                logger.warning(
                    f"[automation {automation_id}] Import page skipped, status is "
                    f"{automation.import_status.value}"
                )
                return ImportJobResult(running_total=payload.fetched_before)

            remaining = row_limit - payload.fetched_before
            if remaining <= 0:
                return ImportJobResult(running_total=payload.fetched_before, finalized=True)

            account = await load_notion_account(session, automation)
            use_row_mapping = automation.use_row_mapping
            page_size = min(self.ctx.settings.IMPORT_PAGE_SIZE, remaining)

            async with self.ctx.notion_client_factory(account.access_token) as client:
                response = await client.query_database(
                    payload.database_id, start_cursor=payload.cursor, page_size=page_size
                )

            pages = (response.get("results") or [])[:remaining]
            await EntityCache(session).upsert(
                pages,
                account_id=account.id,
                workspace_id=account.workspace_id,
                parent_id=payload.database_id,
            )

        if payload.cursor is None:
            await self.ctx.queues.enqueue_write_headers(automation_id, payload.import_key)

        enqueued = 0
        for page in pages:
            version = page.get("last_edited_time") or payload.import_key
            if use_row_mapping:
                # Legacy automations keep row identity in notion_sheets_row_mappings
                job = await self.ctx.queues.enqueue_mapping_sync(
                    automation_id,
                    "incremental",
                    f"{version}-import-{payload.import_key}",
                    page_id=page["id"],
                    event_type=WebhookEventType.PAGE_CREATED.value,
                )
            else:
                job = await self.ctx.queues.enqueue_write_row(
                    automation_id,
                    page["id"],
                    WebhookEventType.PAGE_CREATED.value,
                    version=version,
                    import_key=payload.import_key,
                )
            if job is not None:
                enqueued += 1

        running_total = payload.fetched_before + len(pages)
        next_cursor = response.get("next_cursor") if response.get("has_more") else None
        continues = bool(next_cursor) and running_total < row_limit

        logger.info(
            f"[automation {automation_id}] Import page fetched {len(pages)} records "
            f"(running total {running_total}, {enqueued} write jobs queued)"
        )
        return ImportJobResult(
            records_fetched=len(pages),
            running_total=running_total,
            rows_enqueued=enqueued,
            next_cursor=next_cursor if continues else None,
            has_more=continues,
            finalized=not continues,
        )

    # ------------------------------------------------------------------
    # continuations
    # ------------------------------------------------------------------

    async def on_completed(self, job: Job, payload: BaseModel, result: BaseModel):
        if isinstance(payload, SyncJobData) and result.next_cursor:
            await self.ctx.queues.enqueue_sync(
                payload.user_id, payload.notion_account_id, payload.pass_id, cursor=result.next_cursor
            )

        elif isinstance(payload, ImportJobData):
            async with self.ctx.session_factory() as session:
                tracker = ImportStateTracker(session)
                if result.has_more:
                    await tracker.record_fetched(payload.automation_id, result.running_total)
                    await self.ctx.queues.enqueue_import(
                        payload.automation_id,
                        payload.database_id,
                        payload.import_key,
                        cursor=result.next_cursor,
                        fetched_before=result.running_total,
                    )
                elif result.finalized:
                    await tracker.finalize_total(payload.automation_id, result.running_total)

    async def on_failed(self, job: Job, payload: Optional[BaseModel], error: Exception, will_retry: bool):
        if will_retry or not isinstance(payload, ImportJobData):
            return

        async with self.ctx.session_factory() as session:
            await ImportStateTracker(session).mark_failed(payload.automation_id, str(error))
