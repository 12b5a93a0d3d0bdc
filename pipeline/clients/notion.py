"""
Notion API client: search, retrieve page, query database
"""

import httpx
from typing import Any, Dict, Optional
from core.config import Settings, settings as default_settings
from core.exceptions import NotionAPIError
from pipeline.clients.base import BaseAPIClient
import logging

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class NotionClient(BaseAPIClient):
    """
    Read-only Notion client authenticated with an integration bearer token.

    All list operations return the raw Notion list object
    (``results``, ``next_cursor``, ``has_more``).
    """

    service = "notion"
    error_class = NotionAPIError

    def __init__(
        self,
        access_token: str,
        settings: Settings = default_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(timeout=settings.HTTP_TIMEOUT, transport=transport, **kwargs)
        self.access_token = access_token
        self.base_url = settings.NOTION_API_BASE_URL.rstrip("/")
        self.api_version = settings.NOTION_API_VERSION

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Notion-Version": self.api_version,
            "Content-Type": "application/json",
        }

    async def search(
        self,
        start_cursor: Optional[str] = None,
        page_size: int = MAX_PAGE_SIZE,
        query: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Search every page and database shared with the integration."""
        url = f"{self.base_url}/search"
        body: Dict[str, Any] = {"page_size": min(page_size, MAX_PAGE_SIZE)}
        if start_cursor:
            body["start_cursor"] = start_cursor
        if query:
            body["query"] = query

        response = await self._request("POST", url, json=body)
        return self._json(response, "POST", url)

    async def retrieve_page(self, page_id: str) -> Dict[str, Any]:
        url = f"{self.base_url}/pages/{page_id}"
        response = await self._request("GET", url)
        return self._json(response, "GET", url)

    async def query_database(
        self,
        database_id: str,
        start_cursor: Optional[str] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> Dict[str, Any]:
        """Query one database, most recently edited pages first."""
        url = f"{self.base_url}/databases/{database_id}/query"
        body: Dict[str, Any] = {
            "page_size": max(1, min(page_size, MAX_PAGE_SIZE)),
            "sorts": [{"timestamp": "last_edited_time", "direction": "descending"}],
        }
        if start_cursor:
            body["start_cursor"] = start_cursor

        response = await self._request("POST", url, json=body)
        data = self._json(response, "POST", url)
        logger.debug(
            f"Queried database {database_id}: {len(data.get('results', []))} results, "
            f"has_more={data.get('has_more')}"
        )
        return data
