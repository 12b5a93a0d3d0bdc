"""
Google Sheets / Drive client with OAuth2 refresh.

Values are written with valueInputOption=RAW and read back with
valueRenderOption=UNFORMATTED_VALUE so a row reads back exactly as it was
written (no locale formatting, no formula parsing).
"""

import httpx
import re
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote
from core.config import Settings, settings as default_settings
from core.exceptions import GoogleSheetsAPIError, AuthenticationError
from pipeline.clients.base import BaseAPIClient
import logging

logger = logging.getLogger(__name__)

SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"

TokenRefreshCallback = Callable[[str, Optional[datetime]], Awaitable[None]]

_PLAIN_SHEET_NAME = re.compile(r"^[A-Za-z0-9_]+$")
_UPDATED_ROW = re.compile(r"![A-Z]+(\d+)")


# ============================================================================
# A1 notation helpers
# ============================================================================

def quote_sheet_name(sheet_name: str) -> str:
    """Quote a sheet name for A1 notation when it contains anything but [A-Za-z0-9_]."""
    if _PLAIN_SHEET_NAME.match(sheet_name):
        return sheet_name
    return "'" + sheet_name.replace("'", "''") + "'"


def a1_range(sheet_name: str, cells: str) -> str:
    """``a1_range("My Sheet", "A2:C9")`` → ``'My Sheet'!A2:C9``"""
    return f"{quote_sheet_name(sheet_name)}!{cells}"


def column_letter(index: int) -> str:
    """Zero-based column index → letters (0 → A, 25 → Z, 26 → AA)."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def parse_row_number(updated_range: Optional[str]) -> Optional[int]:
    """First row number of an ``updatedRange`` such as ``Sheet1!A7:D7``."""
    if not updated_range:
        return None
    match = _UPDATED_ROW.search(updated_range)
    return int(match.group(1)) if match else None


class GoogleSheetsClient(BaseAPIClient):
    """
    Sheets values API + Drive file listing for one Google account.

    A 401 triggers one access-token refresh with the account's refresh
    token; ``on_token_refresh`` receives the new token so it can be
    persisted.
    """

    service = "google"
    error_class = GoogleSheetsAPIError

    def __init__(
        self,
        access_token: str,
        refresh_token: Optional[str] = None,
        settings: Settings = default_settings,
        on_token_refresh: Optional[TokenRefreshCallback] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(timeout=settings.HTTP_TIMEOUT, transport=transport, **kwargs)
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.settings = settings
        self.on_token_refresh = on_token_refresh
        self.sheets_url = settings.GOOGLE_SHEETS_API_BASE_URL.rstrip("/")
        self.drive_url = settings.GOOGLE_DRIVE_API_BASE_URL.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    async def _authorized_request(self, method: str, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._request(method, url, **kwargs)
        except AuthenticationError as e:
            if not self.refresh_token or e.context.get("status_code") != 401:
                raise
            logger.info("Google access token rejected, refreshing")
            await self.refresh_access_token()
            response = await self._request(method, url, **kwargs)

        if not response.content:
            return {}
        return self._json(response, method, url)

    async def refresh_access_token(self) -> str:
        """Exchange the refresh token for a new access token."""
        if not self.settings.GOOGLE_SHEETS_CLIENT_ID or not self.settings.GOOGLE_SHEETS_CLIENT_SECRET:
            raise AuthenticationError(
                "Google OAuth client is not configured",
                context={"service": self.service},
            )

        url = self.settings.GOOGLE_OAUTH_TOKEN_URL
        response = await self._request(
            "POST",
            url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.settings.GOOGLE_SHEETS_CLIENT_ID,
                "client_secret": self.settings.GOOGLE_SHEETS_CLIENT_SECRET,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token = self._json(response, "POST", url)

        access_token = token.get("access_token")
        if not access_token:
            raise AuthenticationError(
                "Token refresh returned no access token",
                context={"service": self.service, "url": url},
            )

        expires_at = None
        if token.get("expires_in"):
            expires_at = datetime.utcnow() + timedelta(seconds=int(token["expires_in"]))

        self.access_token = access_token
        if self.on_token_refresh:
            await self.on_token_refresh(access_token, expires_at)
        return access_token

    def _values_url(self, spreadsheet_id: str, range_: str, suffix: str = "") -> str:
        return f"{self.sheets_url}/spreadsheets/{spreadsheet_id}/values/{quote(range_, safe='')}{suffix}"

    # ------------------------------------------------------------------
    # Values API
    # ------------------------------------------------------------------

    async def get_values(
        self,
        spreadsheet_id: str,
        range_: str,
        value_render_option: str = "UNFORMATTED_VALUE",
    ) -> List[List[Any]]:
        url = self._values_url(spreadsheet_id, range_)
        data = await self._authorized_request(
            "GET", url, params={"valueRenderOption": value_render_option, "majorDimension": "ROWS"}
        )
        return data.get("values", [])

    async def update_values(self, spreadsheet_id: str, range_: str, values: List[List[Any]]) -> Dict[str, Any]:
        url = self._values_url(spreadsheet_id, range_)
        return await self._authorized_request(
            "PUT",
            url,
            params={"valueInputOption": "RAW"},
            json={"range": range_, "majorDimension": "ROWS", "values": values},
        )

    async def append_values(self, spreadsheet_id: str, range_: str, values: List[List[Any]]) -> Dict[str, Any]:
        url = self._values_url(spreadsheet_id, range_, ":append")
        return await self._authorized_request(
            "POST",
            url,
            params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
            json={"range": range_, "majorDimension": "ROWS", "values": values},
        )

    async def clear_values(self, spreadsheet_id: str, range_: str) -> Dict[str, Any]:
        url = self._values_url(spreadsheet_id, range_, ":clear")
        return await self._authorized_request("POST", url, json={})

    # ------------------------------------------------------------------
    # Drive API
    # ------------------------------------------------------------------

    async def list_spreadsheets(self, page_token: Optional[str] = None, page_size: int = 100) -> Dict[str, Any]:
        """One page of spreadsheets visible to the account (``files``, ``nextPageToken``)."""
        url = f"{self.drive_url}/files"
        params = {
            "q": f"mimeType='{SPREADSHEET_MIME_TYPE}' and trashed=false",
            "fields": "nextPageToken, files(id, name, webViewLink)",
            "pageSize": page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        return await self._authorized_request("GET", url, params=params)
