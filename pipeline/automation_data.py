"""
Load an automation together with the records a job needs to run it
"""

from typing import Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update
from pydantic import ValidationError
from core.exceptions import (
    AutomationNotFoundError,
    MappingNotFoundError,
    AccountNotFoundError,
    SpreadsheetNotFoundError,
    EntityNotFoundError,
)
from models.automation import Automation
from models.accounts import NotionAccount, GoogleSheetsAccount, GoogleSpreadsheet
from models.mapping import NotionSheetsMapping
from models.notion_entity import NotionEntity
from schemas.mapping import MappingConfig


class AutomationData:
    """An automation, its validated mapping and its destination records"""

    def __init__(
        self,
        automation: Automation,
        mapping: MappingConfig,
        google_account: GoogleSheetsAccount,
        spreadsheet: GoogleSpreadsheet,
    ):
        self.automation = automation
        self.mapping = mapping
        self.google_account = google_account
        self.spreadsheet = spreadsheet

    @property
    def spreadsheet_id(self) -> str:
        return self.spreadsheet.google_spreadsheet_id


async def load_automation(db: AsyncSession, automation_id: int) -> Automation:
    automation = await db.get(Automation, automation_id)
    if automation is None:
        raise AutomationNotFoundError(
            f"Automation {automation_id} not found",
            context={"automation_id": automation_id},
        )
    return automation


async def load_mapping(db: AsyncSession, automation_id: int) -> MappingConfig:
    result = await db.execute(
        select(NotionSheetsMapping).where(NotionSheetsMapping.automation_id == automation_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise MappingNotFoundError(
            f"No column mapping for automation {automation_id}",
            context={"automation_id": automation_id},
        )

    try:
        return MappingConfig.model_validate(row.mapping_config)
    except ValidationError as e:
        raise MappingNotFoundError(
            f"Invalid column mapping for automation {automation_id}",
            context={"automation_id": automation_id},
            original_exception=e,
        )


async def load_notion_account(db: AsyncSession, automation: Automation) -> NotionAccount:
    account = None
    if automation.notion_account_id is not None:
        account = await db.get(NotionAccount, automation.notion_account_id)
    if account is None:
        raise AccountNotFoundError(
            f"Notion account not found for automation {automation.id}",
            context={"automation_id": automation.id, "notion_account_id": automation.notion_account_id},
        )
    return account


async def load_source_entity(db: AsyncSession, automation: Automation) -> NotionEntity:
    entity = None
    if automation.source_entity_id is not None:
        entity = await db.get(NotionEntity, automation.source_entity_id)
    if entity is None:
        raise EntityNotFoundError(
            f"Source database not cached for automation {automation.id}",
            context={"automation_id": automation.id, "source_entity_id": automation.source_entity_id},
        )
    return entity


async def load_automation_data(
    db: AsyncSession, automation_id: int, automation: Optional[Automation] = None
) -> AutomationData:
    """
    Everything a destination write needs.

    Raises:
        AutomationNotFoundError, MappingNotFoundError, AccountNotFoundError,
        SpreadsheetNotFoundError
    """
    automation = automation or await load_automation(db, automation_id)
    mapping = await load_mapping(db, automation_id)

    google_account = None
    if automation.google_sheets_account_id is not None:
        google_account = await db.get(GoogleSheetsAccount, automation.google_sheets_account_id)
    if google_account is None:
        raise AccountNotFoundError(
            f"Google Sheets account not found for automation {automation_id}",
            context={
                "automation_id": automation_id,
                "google_sheets_account_id": automation.google_sheets_account_id,
            },
        )

    spreadsheet = None
    if automation.google_spreadsheet_id is not None:
        spreadsheet = await db.get(GoogleSpreadsheet, automation.google_spreadsheet_id)
    if spreadsheet is None:
        raise SpreadsheetNotFoundError(
            f"Spreadsheet not found for automation {automation_id}",
            context={
                "automation_id": automation_id,
                "google_spreadsheet_id": automation.google_spreadsheet_id,
            },
        )

    return AutomationData(automation, mapping, google_account, spreadsheet)


async def stamp_last_synced(db: AsyncSession, automation_id: int, synced_at: Optional[datetime] = None):
    await db.execute(
        update(Automation)
        .where(Automation.id == automation_id)
        .values(last_synced_at=synced_at or datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
