"""
google-sheets worker: destination writes and spreadsheet discovery.

Row identity is the hidden identity column (the Notion page id) right after
the mapped columns. Every write re-reads the data range to find the row, so
concurrent writers for one automation stay correct without a lock: the
checksum comparison, not job order, decides whether anything is written.
"""

from typing import Any, List, Optional, Tuple
from datetime import datetime
from pydantic import BaseModel
from sqlalchemy import select, update, delete
from core.exceptions import AccountNotFoundError, EntityNotFoundError, UnknownJobTypeError
from core.database import upsert_insert
from models.accounts import GoogleSheetsAccount, GoogleSpreadsheet
from models.automation import Automation
from models.base import ImportStatus
from models.notion_entity import NotionEntity
from pipeline.automation_data import AutomationData, load_automation_data, stamp_last_synced
from pipeline.cache.entity_cache import EntityCache
from pipeline.checksum import compute_row_checksum, normalize_row, transform_page_to_row_values
from pipeline.clients.google_sheets import GoogleSheetsClient, a1_range, parse_row_number
from pipeline.context import PipelineContext
from pipeline.import_tracker import ImportStateTracker
from pipeline.queues.base import Job
from pipeline.workers.base import QueueWorker
from schemas.jobs import (
    ListSpreadsheetsJobData,
    WriteHeadersJobData,
    WriteRowJobData,
    DeleteRowJobData,
    ListSpreadsheetsJobResult,
    WriteHeadersJobResult,
    WriteRowJobResult,
    DeleteRowJobResult,
    google_sheets_adapter,
)
from schemas.mapping import MappingConfig
from schemas.webhook import WebhookEventType
import logging

logger = logging.getLogger(__name__)

LAST_COLUMN = "ZZ"


# ============================================================================
# Shared helpers (also used by the legacy mapping-sync worker)
# ============================================================================

def open_sheets_client(ctx: PipelineContext, account: GoogleSheetsAccount) -> GoogleSheetsClient:
    """Client for one account; refreshed access tokens are written back to the account row."""
    account_id = account.id

    async def save_token(access_token: str, expires_at: Optional[datetime]):
        async with ctx.session_factory() as session:
            await session.execute(
                update(GoogleSheetsAccount)
                .where(GoogleSheetsAccount.id == account_id)
                .values(access_token=access_token, token_expires_at=expires_at, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        logger.info(f"[google account {account_id}] Access token refreshed")

    return ctx.sheets_client_factory(account, save_token)


def build_row(page: dict, page_id: str, mapping: MappingConfig) -> List[Any]:
    """Mapped values plus the identity cell when enabled; this is what gets checksummed."""
    values = transform_page_to_row_values(page, mapping.columns)
    if mapping.include_notion_id:
        values.append(page_id)
    return values


def with_last_sync(values: List[Any], mapping: MappingConfig, synced_at: datetime) -> List[Any]:
    if not mapping.include_last_sync:
        return list(values)
    return list(values) + [synced_at.replace(microsecond=0).isoformat() + "Z"]


def clear_row_range(mapping: MappingConfig, row_number: int) -> str:
    return a1_range(mapping.sheet_name, f"A{row_number}:{LAST_COLUMN}{row_number}")


async def find_identity_row(
    client: GoogleSheetsClient,
    spreadsheet_id: str,
    mapping: MappingConfig,
    page_id: str,
    scan_rows: int,
) -> Tuple[Optional[int], Optional[List[Any]]]:
    """
    Scan the data range for the row whose identity cell is ``page_id``.

    Returns:
        (row_number, row_values) or (None, None); always (None, None) when
        the mapping has no identity column
    """
    if not mapping.include_notion_id:
        logger.warning(
            f"Sheet '{mapping.sheet_name}' has no Notion ID column, existing row for page "
            f"{page_id} cannot be detected"
        )
        return None, None

    start = mapping.data_start_row
    range_ = a1_range(mapping.sheet_name, f"{start}:{start + scan_rows - 1}")
    rows = await client.get_values(spreadsheet_id, range_)

    identity_index = mapping.identity_column_index
    for offset, row in enumerate(rows):
        if len(row) > identity_index and str(row[identity_index]) == page_id:
            return start + offset, row
    return None, None


class GoogleSheetsWorker(QueueWorker):
    """
    Consumes the google-sheets queue.

    Job types:
        write-row:         create / update / skip one row by checksum
        delete-row:        clear the row of a deleted page
        write-headers:     overwrite the header row
        list-spreadsheets: reconcile cached spreadsheet metadata, page by page
    """

    adapter = google_sheets_adapter

    async def process(self, job: Job, payload: BaseModel) -> BaseModel:
        if isinstance(payload, WriteRowJobData):
            return await self.write_row(payload)
        elif isinstance(payload, DeleteRowJobData):
            return await self.delete_row(payload)
        elif isinstance(payload, WriteHeadersJobData):
            return await self.write_headers(payload)
        elif isinstance(payload, ListSpreadsheetsJobData):
            return await self.list_spreadsheets(payload)
        raise UnknownJobTypeError(
            f"Unsupported job type for {self.name}: {job.name}",
            context={"queue": self.name, "job_id": job.id},
        )

    async def on_completed(self, job: Job, payload: BaseModel, result: BaseModel):
        if isinstance(payload, ListSpreadsheetsJobData) and result.next_page_token:
            await self.ctx.queues.enqueue_list_spreadsheets(
                payload.google_sheets_account_id, payload.pass_id, page_token=result.next_page_token
            )

    # ------------------------------------------------------------------
    # write-row
    # ------------------------------------------------------------------

    async def write_row(self, payload: WriteRowJobData) -> WriteRowJobResult:
        automation_id = payload.automation_id

        async with self.ctx.session_factory() as session:
            data = await load_automation_data(session, automation_id)
            entity = await EntityCache(session).get_by_notion_id(payload.page_id)
            if entity is None:
                raise EntityNotFoundError(
                    f"Page {payload.page_id} is not in the entity cache",
                    context={"automation_id": automation_id, "page_id": payload.page_id},
                )

            mapping = data.mapping
            values = build_row(entity.properties_json, payload.page_id, mapping)
            checksum = compute_row_checksum(values)
            now = datetime.utcnow()

            async with open_sheets_client(self.ctx, data.google_account) as client:
                row_number, existing = await find_identity_row(
                    client, data.spreadsheet_id, mapping, payload.page_id, self.ctx.settings.IDENTITY_SCAN_ROWS
                )

                if row_number is not None:
                    existing_checksum = compute_row_checksum(normalize_row(existing, len(values)))
                    if existing_checksum == checksum:
                        outcome = "unchanged"
                    else:
                        await client.update_values(
                            data.spreadsheet_id,
                            a1_range(mapping.sheet_name, f"A{row_number}"),
                            [with_last_sync(values, mapping, now)],
                        )
                        outcome = "updated"
                else:
                    response = await client.append_values(
                        data.spreadsheet_id,
                        a1_range(mapping.sheet_name, f"A{mapping.data_start_row}"),
                        [with_last_sync(values, mapping, now)],
                    )
                    row_number = parse_row_number((response.get("updates") or {}).get("updatedRange"))
                    outcome = "created"

            await stamp_last_synced(session, automation_id, now)

            if (
                payload.event_type == WebhookEventType.PAGE_CREATED.value
                and data.automation.import_status == ImportStatus.IMPORTING
            ):
                await ImportStateTracker(session).record_created_rows(automation_id, 1)

        if outcome == "unchanged":
            logger.info(f"[automation {automation_id}] Row for page {payload.page_id} unchanged, skipping write")
        else:
            logger.info(f"[automation {automation_id}] Row {row_number} {outcome} for page {payload.page_id}")

        return WriteRowJobResult(
            outcome=outcome,
            rows_created=int(outcome == "created"),
            rows_updated=int(outcome == "updated"),
            rows_unchanged=int(outcome == "unchanged"),
            row_number=row_number,
            checksum=checksum,
        )

    # ------------------------------------------------------------------
    # delete-row
    # ------------------------------------------------------------------

    async def delete_row(self, payload: DeleteRowJobData) -> DeleteRowJobResult:
        automation_id = payload.automation_id

        async with self.ctx.session_factory() as session:
            data = await load_automation_data(session, automation_id)

            async with open_sheets_client(self.ctx, data.google_account) as client:
                row_number, _ = await find_identity_row(
                    client, data.spreadsheet_id, data.mapping, payload.page_id, self.ctx.settings.IDENTITY_SCAN_ROWS
                )
                if row_number is None:
                    logger.info(f"[automation {automation_id}] No row for deleted page {payload.page_id}")
                    return DeleteRowJobResult(status="not_found", rows_deleted=0)

                # Soft delete: the row becomes a gap, later rows keep their numbers
                await client.clear_values(data.spreadsheet_id, clear_row_range(data.mapping, row_number))

            # Keep the cache row as a tombstone
            await session.execute(
                update(NotionEntity)
                .where(NotionEntity.notion_id == payload.page_id)
                .values(archived=True, updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        logger.info(f"[automation {automation_id}] Cleared row {row_number} of deleted page {payload.page_id}")
        return DeleteRowJobResult(status="deleted", rows_deleted=1, row_number=row_number)

    # ------------------------------------------------------------------
    # write-headers
    # ------------------------------------------------------------------

    async def write_headers(self, payload: WriteHeadersJobData) -> WriteHeadersJobResult:
        async with self.ctx.session_factory() as session:
            data: AutomationData = await load_automation_data(session, payload.automation_id)

        mapping = data.mapping
        headers = mapping.header_values()
        header_row = mapping.header_row
        range_ = a1_range(mapping.sheet_name, f"A{header_row}")

        async with open_sheets_client(self.ctx, data.google_account) as client:
            # Full overwrite: no stale header cells survive a shorter mapping
            await client.clear_values(data.spreadsheet_id, clear_row_range(mapping, header_row))
            await client.update_values(data.spreadsheet_id, range_, [headers])

        logger.info(f"[automation {payload.automation_id}] Wrote {len(headers)} headers to row {header_row}")
        return WriteHeadersJobResult(range=range_, headers_written=len(headers))

    # ------------------------------------------------------------------
    # list-spreadsheets
    # ------------------------------------------------------------------

    async def list_spreadsheets(self, payload: ListSpreadsheetsJobData) -> ListSpreadsheetsJobResult:
        account_id = payload.google_sheets_account_id

        async with self.ctx.session_factory() as session:
            account = await session.get(GoogleSheetsAccount, account_id)
            if account is None:
                raise AccountNotFoundError(
                    f"Google Sheets account {account_id} not found",
                    context={"google_sheets_account_id": account_id},
                )

            async with open_sheets_client(self.ctx, account) as client:
                response = await client.list_spreadsheets(page_token=payload.page_token)

            files = response.get("files") or []
            next_page_token = response.get("nextPageToken")

            if not files and not payload.page_token:
                deleted = await self._delete_unreferenced(session, account_id)
                logger.info(f"[google account {account_id}] No spreadsheets visible, removed {deleted} cached")
                return ListSpreadsheetsJobResult(spreadsheets_deleted=deleted, next_page_token=next_page_token)

            now = datetime.utcnow()
            for item in files:
                stmt = upsert_insert(session, GoogleSpreadsheet).values(
                    google_sheets_account_id=account_id,
                    google_spreadsheet_id=item["id"],
                    title=item.get("name") or "Untitled",
                    url=item.get("webViewLink"),
                    created_at=now,
                    updated_at=now,
                )
                stmt = stmt.on_conflict_do_update(
                    index_elements=["google_sheets_account_id", "google_spreadsheet_id"],
                    set_={
                        "title": stmt.excluded.title,
                        "url": stmt.excluded.url,
                        "updated_at": stmt.excluded.updated_at,
                    }
                )
                await session.execute(stmt)
            await session.commit()

        logger.info(
            f"[google account {account_id}] Cached {len(files)} spreadsheets "
            f"(more pages: {bool(next_page_token)})"
        )
        return ListSpreadsheetsJobResult(spreadsheets_upserted=len(files), next_page_token=next_page_token)

    @staticmethod
    async def _delete_unreferenced(session, account_id: int) -> int:
        # Spreadsheets still targeted by an automation stay (foreign key)
        referenced = select(Automation.google_spreadsheet_id).where(
            Automation.google_spreadsheet_id.is_not(None)
        )
        result = await session.execute(
            delete(GoogleSpreadsheet)
            .where(
                GoogleSpreadsheet.google_sheets_account_id == account_id,
                GoogleSpreadsheet.id.not_in(referenced),
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount
