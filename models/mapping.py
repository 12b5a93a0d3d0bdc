from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from models.base import Base, BigIntPK, JSONType


class NotionSheetsMapping(Base):
    """
    Column mapping of one automation.

    mapping_config is validated as schemas.mapping.MappingConfig when read.
    """
    __tablename__ = "notion_sheets_mappings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    automation_id = Column(Integer, ForeignKey("automations.id"), nullable=False, unique=True)
    mapping_config = Column(JSONType, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class NotionSheetsRowMapping(Base):
    """
    Legacy row identity: (automation, Notion page) → sheet row number.

    Only used by the mapping-sync queue; the current write path scans the
    identity column in the sheet instead.
    """
    __tablename__ = "notion_sheets_row_mappings"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    automation_id = Column(Integer, ForeignKey("automations.id"), nullable=False, index=True)
    notion_page_id = Column(String(64), nullable=False)
    sheet_row_number = Column(Integer, nullable=False)
    checksum = Column(String(64), nullable=False)
    last_synced_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("automation_id", "notion_page_id", name="uq_row_mapping_page"),
    )
