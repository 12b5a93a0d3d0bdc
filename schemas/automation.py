"""
Cached view of an active automation
"""

from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class AutomationSnapshot(BaseModel):
    """
    The fields of an Automation the cron trigger needs.

    Stored as JSON in the Redis "automations" hash, keyed by automation id.
    """
    id: int
    uuid: str
    user_id: str
    name: str
    is_active: bool = True
    interval: str = "5m"
    notion_account_id: Optional[int] = None
    google_sheets_account_id: Optional[int] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def from_orm(cls, automation):
        """Build from an Automation row (UUID → str)"""
        return cls(
            id=automation.id,
            uuid=str(automation.uuid),
            user_id=automation.user_id,
            name=automation.name,
            is_active=automation.is_active,
            interval=automation.interval,
            notion_account_id=automation.notion_account_id,
            google_sheets_account_id=automation.google_sheets_account_id,
            last_synced_at=automation.last_synced_at,
        )
