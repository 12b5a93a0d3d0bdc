"""
Typed job payloads and results, one tagged union per queue.

Every payload carries a ``job_type`` literal; workers parse the raw job data
with the queue's TypeAdapter and dispatch on the resulting class.
"""

from pydantic import BaseModel, Field, TypeAdapter
from typing import Optional, Literal, Union, Annotated


# ============================================================================
# notion-sync queue
# ============================================================================

class SyncJobData(BaseModel):
    """Cursor-paginated search over everything a Notion account can see"""
    job_type: Literal["sync"] = "sync"
    user_id: str
    notion_account_id: int
    pass_id: str
    cursor: Optional[str] = None


class ImportJobData(BaseModel):
    """One page of a bulk import from a Notion database"""
    job_type: Literal["import"] = "import"
    automation_id: int
    database_id: str
    import_key: str
    cursor: Optional[str] = None
    fetched_before: int = 0  # records fetched by earlier pages of this import


class SyncJobResult(BaseModel):
    records_upserted: int = 0
    next_cursor: Optional[str] = None
    has_more: bool = False
    skipped: bool = False
    reason: Optional[str] = None


class ImportJobResult(BaseModel):
    records_fetched: int = 0
    running_total: int = 0
    rows_enqueued: int = 0
    next_cursor: Optional[str] = None
    has_more: bool = False
    finalized: bool = False


NotionSyncJobData = Annotated[
    Union[SyncJobData, ImportJobData], Field(discriminator="job_type")
]


# ============================================================================
# notion-page-fetch queue
# ============================================================================

class FetchPageJobData(BaseModel):
    job_type: Literal["fetch-page"] = "fetch-page"
    automation_id: int
    page_id: str
    event_type: str
    event_timestamp: str


class FetchPageJobResult(BaseModel):
    page_id: str
    downstream_queue: Optional[str] = None
    downstream_job_id: Optional[str] = None


# ============================================================================
# google-sheets queue
# ============================================================================

class ListSpreadsheetsJobData(BaseModel):
    job_type: Literal["list-spreadsheets"] = "list-spreadsheets"
    google_sheets_account_id: int
    pass_id: str
    page_token: Optional[str] = None


class WriteHeadersJobData(BaseModel):
    job_type: Literal["write-headers"] = "write-headers"
    automation_id: int


class WriteRowJobData(BaseModel):
    job_type: Literal["write-row"] = "write-row"
    automation_id: int
    page_id: str
    event_type: str = "page.created"


class DeleteRowJobData(BaseModel):
    job_type: Literal["delete-row"] = "delete-row"
    automation_id: int
    page_id: str


class ListSpreadsheetsJobResult(BaseModel):
    spreadsheets_upserted: int = 0
    spreadsheets_deleted: int = 0
    next_page_token: Optional[str] = None


class WriteHeadersJobResult(BaseModel):
    range: str
    headers_written: int


class WriteRowJobResult(BaseModel):
    """Exactly one of rows_created / rows_updated / rows_unchanged is 1"""
    outcome: Literal["created", "updated", "unchanged"]
    rows_created: int = 0
    rows_updated: int = 0
    rows_unchanged: int = 0
    row_number: Optional[int] = None
    checksum: str


class DeleteRowJobResult(BaseModel):
    status: Literal["deleted", "not_found"]
    rows_deleted: int = 0
    row_number: Optional[int] = None


GoogleSheetsJobData = Annotated[
    Union[ListSpreadsheetsJobData, WriteHeadersJobData, WriteRowJobData, DeleteRowJobData],
    Field(discriminator="job_type"),
]


# ============================================================================
# mapping-sync queue (legacy row-mapping path)
# ============================================================================

class MappingSyncJobData(BaseModel):
    job_type: Literal["mapping-sync"] = "mapping-sync"
    automation_id: int
    sync_type: Literal["full", "incremental", "delete"]
    page_id: Optional[str] = None
    event_type: Optional[str] = None


class MappingSyncJobResult(BaseModel):
    status: Literal["completed", "failed"] = "completed"
    message: Optional[str] = None
    rows_processed: int = 0
    rows_created: int = 0
    rows_updated: int = 0
    rows_deleted: int = 0


notion_sync_adapter = TypeAdapter(NotionSyncJobData)
# Single-variant queues: the job_type literal still rejects foreign payloads
page_fetch_adapter = TypeAdapter(FetchPageJobData)
google_sheets_adapter = TypeAdapter(GoogleSheetsJobData)
mapping_sync_adapter = TypeAdapter(MappingSyncJobData)
