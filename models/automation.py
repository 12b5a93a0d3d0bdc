from sqlalchemy import Column, Integer, String, Enum, DateTime, Text, Boolean, ForeignKey, Index, Uuid
from datetime import datetime
import uuid
from models.base import Base, BigIntPK, ImportStatus


class Automation(Base):
    """
    One configured Notion database → Google Sheet sync link.

    Purpose:
    - Ties a Notion account and source database to a Google account and spreadsheet
    - Drives the cron trigger (interval + last_synced_at)
    - Tracks bulk-import progress (import_* columns)

    Design:
    - Created by user action, mutated only by the pipeline
    - import_processed_rows <= import_total_rows once the total is known
    - import_fetched_rows is the running total while the import paginates;
      import_total_rows is only written when pagination stops
    """
    __tablename__ = "automations"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    uuid = Column(Uuid, default=uuid.uuid4, unique=True, nullable=False, index=True)
    user_id = Column(String(100), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    interval = Column(String(20), default="5m", nullable=False)  # "5m", "1h"

    # Source and destination
    notion_account_id = Column(Integer, ForeignKey("notion_accounts.id"), nullable=True)
    google_sheets_account_id = Column(Integer, ForeignKey("google_sheets_accounts.id"), nullable=True)
    google_spreadsheet_id = Column(Integer, ForeignKey("google_spreadsheets.id"), nullable=True)
    source_entity_id = Column(Integer, ForeignKey("notion_entities.id"), nullable=True, index=True)

    # Legacy identity path: correlate rows through notion_sheets_row_mappings
    use_row_mapping = Column(Boolean, default=False, nullable=False)

    last_synced_at = Column(DateTime, nullable=True)

    # Import sub-state
    import_status = Column(Enum(ImportStatus), default=ImportStatus.PENDING, nullable=False)
    import_started_at = Column(DateTime, nullable=True)
    import_completed_at = Column(DateTime, nullable=True)
    import_total_rows = Column(Integer, nullable=True)
    import_processed_rows = Column(Integer, default=0, nullable=False)
    import_fetched_rows = Column(Integer, default=0, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_automation_active_account", "is_active", "notion_account_id"),
    )
