"""
Pytest configuration and fixtures
"""

import re
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
import fakeredis.aioredis
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from core.config import Settings
from core.exceptions import ResourceNotFoundError
from models import (
    Base,
    Automation,
    EntityType,
    GoogleSheetsAccount,
    GoogleSpreadsheet,
    NotionAccount,
    NotionEntity,
    NotionSheetsMapping,
)
from pipeline.context import PipelineContext
from pipeline.queues.definitions import SyncQueues, build_queue_configs
from pipeline.workers.pool import build_workers

DATABASE_ID = "db1"
SPREADSHEET_ID = "sheet-1"
SHEET_NAME = "Tasks"


# ============================================================================
# In-memory Notion
# ============================================================================

class FakeNotion:
    """Pages and databases served by FakeNotionClient instances"""

    def __init__(self):
        self.pages: Dict[str, Dict[str, Any]] = {}
        self.databases: Dict[str, List[str]] = {}
        self.search_results: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None
        self.calls: List[tuple] = []

    def add_page(self, page: Dict[str, Any], database_id: str = DATABASE_ID):
        self.pages[page["id"]] = page
        ids = self.databases.setdefault(database_id, [])
        if page["id"] not in ids:
            ids.append(page["id"])

    def client(self, access_token: str) -> "FakeNotionClient":
        return FakeNotionClient(self, access_token)


class FakeNotionClient:
    def __init__(self, notion: FakeNotion, access_token: str):
        self.notion = notion
        self.access_token = access_token

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    def _check(self):
        if self.notion.fail_with is not None:
            raise self.notion.fail_with

    @staticmethod
    def _paginate(items: List[Any], start_cursor: Optional[str], page_size: int) -> Dict[str, Any]:
        offset = int(start_cursor or 0)
        end = offset + page_size
        has_more = end < len(items)
        return {
            "object": "list",
            "results": items[offset:end],
            "next_cursor": str(end) if has_more else None,
            "has_more": has_more,
        }

    async def search(self, start_cursor=None, page_size=100, query=None):
        self.notion.calls.append(("search", start_cursor))
        self._check()
        return self._paginate(self.notion.search_results, start_cursor, page_size)

    async def retrieve_page(self, page_id):
        self.notion.calls.append(("retrieve_page", page_id))
        self._check()
        if page_id not in self.notion.pages:
            raise ResourceNotFoundError("notion resource not found", context={"status_code": 404})
        return self.notion.pages[page_id]

    async def query_database(self, database_id, start_cursor=None, page_size=100):
        self.notion.calls.append(("query_database", database_id, start_cursor, page_size))
        self._check()
        pages = [self.notion.pages[page_id] for page_id in self.notion.databases.get(database_id, [])]
        return self._paginate(pages, start_cursor, page_size)


# ============================================================================
# In-memory Google Sheets
# ============================================================================

_A1_CELLS = re.compile(r"^([A-Z]*)(\d+)(?::([A-Z]*)(\d+))?$")


def _split_range(range_: str):
    sheet, _, cells = range_.rpartition("!")
    match = _A1_CELLS.match(cells)
    start = int(match.group(2))
    end = int(match.group(4)) if match.group(4) else start
    return sheet, start, end


class FakeSheets:
    """
    Row-oriented grids keyed by spreadsheet id, written from column A.

    ``writes`` records every mutating call as (operation, range, values).
    """

    def __init__(self):
        self.grids: Dict[str, Dict[int, List[Any]]] = {}
        self.writes: List[tuple] = []
        self.spreadsheet_pages: Dict[Optional[str], Dict[str, Any]] = {None: {"files": []}}

    def grid(self, spreadsheet_id: str = SPREADSHEET_ID) -> Dict[int, List[Any]]:
        return self.grids.setdefault(spreadsheet_id, {})

    def row(self, row_number: int, spreadsheet_id: str = SPREADSHEET_ID) -> List[Any]:
        return self.grid(spreadsheet_id).get(row_number, [])

    def data_rows(self, spreadsheet_id: str = SPREADSHEET_ID, start: int = 2) -> Dict[int, List[Any]]:
        return {n: values for n, values in sorted(self.grid(spreadsheet_id).items()) if n >= start and values}

    def client(self, account) -> "FakeSheetsClient":
        return FakeSheetsClient(self)


class FakeSheetsClient:
    def __init__(self, sheets: FakeSheets):
        self.sheets = sheets

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return None

    @staticmethod
    def _trim(values: List[Any]) -> List[Any]:
        values = list(values)
        while values and values[-1] in ("", None):
            values.pop()
        return values

    async def get_values(self, spreadsheet_id, range_, value_render_option="UNFORMATTED_VALUE"):
        _, start, end = _split_range(range_)
        grid = self.sheets.grid(spreadsheet_id)
        last = max([n for n, values in grid.items() if values and start <= n <= end], default=start - 1)
        return [self._trim(grid.get(n, [])) for n in range(start, last + 1)]

    async def update_values(self, spreadsheet_id, range_, values):
        sheet, start, _ = _split_range(range_)
        grid = self.sheets.grid(spreadsheet_id)
        for offset, row in enumerate(values):
            existing = list(grid.get(start + offset, []))
            existing.extend([""] * (len(row) - len(existing)))
            existing[: len(row)] = row
            grid[start + offset] = existing
        self.sheets.writes.append(("update", range_, values))
        return {"updatedRange": range_, "updatedRows": len(values)}

    async def append_values(self, spreadsheet_id, range_, values):
        sheet, start, _ = _split_range(range_)
        grid = self.sheets.grid(spreadsheet_id)
        last = max([n for n, row in grid.items() if row], default=0)
        row_number = max(last + 1, start)
        for offset, row in enumerate(values):
            grid[row_number + offset] = list(row)
        self.sheets.writes.append(("append", range_, values))
        return {"updates": {"updatedRange": f"{sheet}!A{row_number}:E{row_number}", "updatedRows": len(values)}}

    async def clear_values(self, spreadsheet_id, range_):
        _, start, end = _split_range(range_)
        grid = self.sheets.grid(spreadsheet_id)
        for n in range(start, end + 1):
            if n in grid:
                grid[n] = []
        self.sheets.writes.append(("clear", range_, None))
        return {"clearedRange": range_}

    async def list_spreadsheets(self, page_token=None, page_size=100):
        return self.sheets.spreadsheet_pages.get(page_token, {"files": []})


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    return Settings(
        DATABASE_URL="sqlite+aiosqlite://",
        ENVIRONMENT="test",
        NOTION_WEBHOOK_SECRET="test-webhook-secret",
        GOOGLE_SHEETS_CLIENT_ID="client-id",
        GOOGLE_SHEETS_CLIENT_SECRET="client-secret",
        IMPORT_PAGE_SIZE=100,
        IMPORT_ROW_LIMIT=100,
        IDENTITY_SCAN_ROWS=1000,
        WORKER_POLL_INTERVAL=0.01,
    )


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """SQLite database file per test"""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        echo=False,
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def redis_client():
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def fake_notion():
    return FakeNotion()


@pytest.fixture
def fake_sheets():
    return FakeSheets()


@pytest.fixture
def queues(redis_client, test_settings):
    """The four pipeline queues without rate limits and with instant retries"""
    configs = {
        name: config.model_copy(
            update={"rate_limit": None, "retry": config.retry.model_copy(update={"delay": 0})}
        )
        for name, config in build_queue_configs(test_settings).items()
    }
    return SyncQueues(redis_client, test_settings, configs=configs)


@pytest.fixture
def ctx(session_factory, redis_client, test_settings, queues, fake_notion, fake_sheets):
    return PipelineContext(
        session_factory,
        redis_client,
        test_settings,
        queues=queues,
        notion_client_factory=fake_notion.client,
        sheets_client_factory=lambda account, on_token_refresh=None: fake_sheets.client(account),
    )


@pytest.fixture
def mapping_config():
    return {
        "sheetName": SHEET_NAME,
        "headerRow": 1,
        "dataStartRow": 2,
        "includeNotionId": True,
        "includeLastSync": False,
        "columns": [
            {"notionPropertyId": "title", "notionPropertyName": "Name", "notionPropertyType": "title",
             "sheetColumnIndex": 0, "sheetColumnLetter": "A"},
            {"notionPropertyId": "st", "notionPropertyName": "Status", "notionPropertyType": "select",
             "sheetColumnIndex": 1, "sheetColumnLetter": "B"},
            {"notionPropertyId": "ct", "notionPropertyName": "Count", "notionPropertyType": "number",
             "sheetColumnIndex": 2, "sheetColumnLetter": "C"},
            {"notionPropertyId": "tg", "notionPropertyName": "Tags", "notionPropertyType": "multi_select",
             "sheetColumnIndex": 3, "sheetColumnLetter": "D"},
        ],
    }


@pytest.fixture
def make_page():
    """Build a Notion page object of the seeded database"""

    def _make_page(
        page_id: str,
        name: str = "Task",
        status: str = "Todo",
        count: Optional[float] = 1,
        tags: Optional[List[str]] = None,
        edited: str = "2024-01-15T10:00:00.000Z",
        database_id: str = DATABASE_ID,
    ) -> Dict[str, Any]:
        return {
            "object": "page",
            "id": page_id,
            "created_time": "2024-01-01T00:00:00.000Z",
            "last_edited_time": edited,
            "archived": False,
            "parent": {"type": "database_id", "database_id": database_id},
            "properties": {
                "Name": {"id": "title", "type": "title", "title": [{"plain_text": name}]},
                "Status": {"id": "st", "type": "select", "select": {"name": status}},
                "Count": {"id": "ct", "type": "number", "number": count},
                "Tags": {"id": "tg", "type": "multi_select",
                         "multi_select": [{"name": tag} for tag in (tags or [])]},
            },
        }

    return _make_page


@pytest_asyncio.fixture(scope="function")
async def seeded(db_session, mapping_config):
    """
    One active automation wired end to end:
    Notion account → database db1 → mapping → Google account → spreadsheet.
    """
    notion_account = NotionAccount(
        user_id="user-1", workspace_id="ws-1", workspace_name="Workspace", access_token="notion-token"
    )
    google_account = GoogleSheetsAccount(
        user_id="user-1", email="user@example.com", access_token="google-token", refresh_token="refresh-token"
    )
    db_session.add_all([notion_account, google_account])
    await db_session.flush()

    spreadsheet = GoogleSpreadsheet(
        google_sheets_account_id=google_account.id, google_spreadsheet_id=SPREADSHEET_ID, title="Tasks sheet"
    )
    database = NotionEntity(
        notion_id=DATABASE_ID,
        type=EntityType.DATABASE,
        account_id=notion_account.id,
        workspace_id="ws-1",
        title_plain="Tasks",
        properties_json={"object": "database", "id": DATABASE_ID},
    )
    db_session.add_all([spreadsheet, database])
    await db_session.flush()

    automation = Automation(
        user_id="user-1",
        name="Tasks to Sheets",
        interval="5m",
        notion_account_id=notion_account.id,
        google_sheets_account_id=google_account.id,
        google_spreadsheet_id=spreadsheet.id,
        source_entity_id=database.id,
    )
    db_session.add(automation)
    await db_session.flush()

    db_session.add(NotionSheetsMapping(automation_id=automation.id, mapping_config=mapping_config))
    await db_session.commit()

    return SimpleNamespace(
        automation_id=automation.id,
        notion_account_id=notion_account.id,
        google_account_id=google_account.id,
        spreadsheet_row_id=spreadsheet.id,
        database_entity_id=database.id,
    )


@pytest.fixture
def run_pipeline(ctx):
    """Drain all four queues, round after round, until no worker finds a job"""
    workers = build_workers(ctx)

    async def _run(max_rounds: int = 20) -> int:
        processed = 0
        for _ in range(max_rounds):
            processed_this_round = 0
            for worker in workers.values():
                processed_this_round += await worker.drain()
            processed += processed_this_round
            if not processed_this_round:
                break
        return processed

    return _run
