"""
mapping-sync worker: the legacy write path.

Row identity comes from notion_sheets_row_mappings instead of the identity
column, and the stored checksum decides whether a row needs rewriting.
Automations opt in with ``use_row_mapping``.
"""

from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import upsert_insert
from core.exceptions import EntityNotFoundError, JobError
from models.base import ImportStatus
from models.mapping import NotionSheetsRowMapping
from models.notion_entity import NotionEntity
from pipeline.automation_data import (
    AutomationData,
    load_automation_data,
    load_source_entity,
    stamp_last_synced,
)
from pipeline.cache.entity_cache import EntityCache
from pipeline.checksum import compute_row_checksum
from pipeline.clients.google_sheets import GoogleSheetsClient, a1_range, parse_row_number
from pipeline.import_tracker import ImportStateTracker
from pipeline.queues.base import Job
from pipeline.workers.base import QueueWorker
from pipeline.workers.google_sheets import build_row, clear_row_range, open_sheets_client, with_last_sync
from schemas.jobs import MappingSyncJobData, MappingSyncJobResult, mapping_sync_adapter
from schemas.webhook import WebhookEventType
import logging

logger = logging.getLogger(__name__)


class MappingSyncWorker(QueueWorker):
    adapter = mapping_sync_adapter

    async def process(self, job: Job, payload: BaseModel) -> MappingSyncJobResult:
        if payload.sync_type in ("incremental", "delete") and not payload.page_id:
            raise JobError(
                f"{payload.sync_type} mapping sync needs a page_id",
                context={"queue": self.name, "job_id": job.id, "automation_id": payload.automation_id},
            )

        async with self.ctx.session_factory() as session:
            data = await load_automation_data(session, payload.automation_id)

            async with open_sheets_client(self.ctx, data.google_account) as client:
                if payload.sync_type == "delete":
                    result = await self._delete(session, client, data, payload.page_id)
                elif payload.sync_type == "incremental":
                    entity = await EntityCache(session).get_by_notion_id(payload.page_id)
                    if entity is None:
                        raise EntityNotFoundError(
                            f"Page {payload.page_id} is not in the entity cache",
                            context={"automation_id": payload.automation_id, "page_id": payload.page_id},
                        )
                    result = await self._sync_pages(session, client, data, [entity])
                else:
                    source = await load_source_entity(session, data.automation)
                    pages = await EntityCache(session).list_pages(source.notion_id)
                    result = await self._sync_pages(session, client, data, pages)

            await stamp_last_synced(session, payload.automation_id)

            if (
                payload.event_type == WebhookEventType.PAGE_CREATED.value
                and result.rows_processed
                and data.automation.import_status == ImportStatus.IMPORTING
            ):
                # Unchanged rows count toward import progress too
                await ImportStateTracker(session).record_created_rows(payload.automation_id, result.rows_processed)

        logger.info(
            f"[automation {payload.automation_id}] Mapping sync ({payload.sync_type}) processed "
            f"{result.rows_processed} rows: {result.rows_created} created, {result.rows_updated} updated, "
            f"{result.rows_deleted} deleted"
        )
        return result

    async def _get_row_mapping(
        self, session: AsyncSession, automation_id: int, page_id: str
    ) -> Optional[NotionSheetsRowMapping]:
        result = await session.execute(
            select(NotionSheetsRowMapping).where(
                NotionSheetsRowMapping.automation_id == automation_id,
                NotionSheetsRowMapping.notion_page_id == page_id,
            )
        )
        return result.scalar_one_or_none()

    async def _save_row_mapping(
        self, session: AsyncSession, automation_id: int, page_id: str, row_number: int, checksum: str
    ):
        now = datetime.utcnow()
        stmt = upsert_insert(session, NotionSheetsRowMapping).values(
            automation_id=automation_id,
            notion_page_id=page_id,
            sheet_row_number=row_number,
            checksum=checksum,
            last_synced_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["automation_id", "notion_page_id"],
            set_={
                "sheet_row_number": stmt.excluded.sheet_row_number,
                "checksum": stmt.excluded.checksum,
                "last_synced_at": stmt.excluded.last_synced_at,
            }
        )
        await session.execute(stmt)

    async def _sync_pages(
        self,
        session: AsyncSession,
        client: GoogleSheetsClient,
        data: AutomationData,
        pages: List[NotionEntity],
    ) -> MappingSyncJobResult:
        automation_id = data.automation.id
        mapping = data.mapping
        result = MappingSyncJobResult()

        for entity in pages:
            values = build_row(entity.properties_json or {}, entity.notion_id, mapping)
            checksum = compute_row_checksum(values)
            existing = await self._get_row_mapping(session, automation_id, entity.notion_id)
            result.rows_processed += 1

            if existing is not None and existing.checksum == checksum:
                continue

            now = datetime.utcnow()
            row = with_last_sync(values, mapping, now)

            if existing is not None:
                row_number = existing.sheet_row_number
                await client.update_values(
                    data.spreadsheet_id, a1_range(mapping.sheet_name, f"A{row_number}"), [row]
                )
                result.rows_updated += 1
            else:
                response = await client.append_values(
                    data.spreadsheet_id, a1_range(mapping.sheet_name, f"A{mapping.data_start_row}"), [row]
                )
                row_number = parse_row_number((response.get("updates") or {}).get("updatedRange"))
                if row_number is None:
                    raise JobError(
                        "Append response did not report the written row",
                        context={"automation_id": automation_id, "page_id": entity.notion_id},
                    )
                result.rows_created += 1

            await self._save_row_mapping(session, automation_id, entity.notion_id, row_number, checksum)
            await session.commit()

        return result

    async def _delete(
        self, session: AsyncSession, client: GoogleSheetsClient, data: AutomationData, page_id: str
    ) -> MappingSyncJobResult:
        automation_id = data.automation.id
        existing = await self._get_row_mapping(session, automation_id, page_id)
        if existing is None:
            return MappingSyncJobResult(message="no_row_mapping")

        await client.clear_values(data.spreadsheet_id, clear_row_range(data.mapping, existing.sheet_row_number))
        await session.execute(
            delete(NotionSheetsRowMapping).where(NotionSheetsRowMapping.id == existing.id)
        )
        await session.commit()

        return MappingSyncJobResult(rows_processed=1, rows_deleted=1)
