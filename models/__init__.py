"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class, portable column types and shared enums
          (ImportStatus, EntityType)
    automation: Automation (sync link + import sub-state)
    accounts: NotionAccount, GoogleSheetsAccount, GoogleSpreadsheet
    notion_entity: NotionEntity (entity cache of fetched pages/databases)
    mapping: NotionSheetsMapping (column mapping), NotionSheetsRowMapping
             (legacy row identity)

Relationships:
    - Automation → NotionAccount / GoogleSheetsAccount (credentials)
    - Automation → GoogleSpreadsheet (destination)
    - Automation → NotionEntity (source database, via source_entity_id)
    - NotionSheetsMapping → Automation (one-to-one)
"""

from models.base import Base, ImportStatus, EntityType
from models.accounts import NotionAccount, GoogleSheetsAccount, GoogleSpreadsheet
from models.notion_entity import NotionEntity
from models.automation import Automation
from models.mapping import NotionSheetsMapping, NotionSheetsRowMapping

__all__ = [
    "Base",
    "ImportStatus",
    "EntityType",
    "Automation",
    "NotionAccount",
    "GoogleSheetsAccount",
    "GoogleSpreadsheet",
    "NotionEntity",
    "NotionSheetsMapping",
    "NotionSheetsRowMapping",
]
