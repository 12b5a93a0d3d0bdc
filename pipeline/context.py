"""
Process-scoped collaborators shared by the API, the workers and the trigger
"""

from typing import Awaitable, Callable, Optional
from datetime import datetime
from sqlalchemy.ext.asyncio import async_sessionmaker
import redis.asyncio as aioredis
from core.config import Settings, settings as default_settings
from models.accounts import GoogleSheetsAccount
from pipeline.cache.automation_cache import AutomationCache
from pipeline.clients.notion import NotionClient
from pipeline.clients.google_sheets import GoogleSheetsClient
from pipeline.queues.definitions import SyncQueues

TokenRefreshCallback = Callable[[str, Optional[datetime]], Awaitable[None]]
NotionClientFactory = Callable[[str], NotionClient]
SheetsClientFactory = Callable[[GoogleSheetsAccount, Optional[TokenRefreshCallback]], GoogleSheetsClient]


class PipelineContext:
    """
    Everything a handler needs, constructed once and passed explicitly.

    Tests build their own context around SQLite, fakeredis and in-memory
    API clients.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        redis: aioredis.Redis,
        settings: Settings = default_settings,
        queues: Optional[SyncQueues] = None,
        automation_cache: Optional[AutomationCache] = None,
        notion_client_factory: Optional[NotionClientFactory] = None,
        sheets_client_factory: Optional[SheetsClientFactory] = None,
    ):
        self.session_factory = session_factory
        self.redis = redis
        self.settings = settings
        self.queues = queues or SyncQueues(redis, settings)
        self.automation_cache = automation_cache or AutomationCache(redis)
        self.notion_client_factory = notion_client_factory or self._default_notion_client
        self.sheets_client_factory = sheets_client_factory or self._default_sheets_client

    def _default_notion_client(self, access_token: str) -> NotionClient:
        return NotionClient(access_token, settings=self.settings)

    def _default_sheets_client(
        self, account: GoogleSheetsAccount, on_token_refresh: Optional[TokenRefreshCallback] = None
    ) -> GoogleSheetsClient:
        return GoogleSheetsClient(
            account.access_token,
            refresh_token=account.refresh_token,
            settings=self.settings,
            on_token_refresh=on_token_refresh,
        )
