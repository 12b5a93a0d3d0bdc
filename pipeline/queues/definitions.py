"""
The four pipeline queues and one enqueue helper per job type.

Each helper derives the job id from the natural key of the work, so
enqueuing the same work twice (same cursor page, same record version) is
deduplicated by the queue.
"""

from typing import Dict, Optional
import redis.asyncio as aioredis
from core.config import Settings, settings as default_settings
from pipeline.queues.base import JobQueue, QueueConfig, RateLimit, RetryPolicy, Job
from schemas.jobs import (
    SyncJobData,
    ImportJobData,
    FetchPageJobData,
    ListSpreadsheetsJobData,
    WriteHeadersJobData,
    WriteRowJobData,
    DeleteRowJobData,
    MappingSyncJobData,
)

NOTION_SYNC_QUEUE = "notion-sync"
NOTION_PAGE_FETCH_QUEUE = "notion-page-fetch"
GOOGLE_SHEETS_QUEUE = "google-sheets"
MAPPING_SYNC_QUEUE = "mapping-sync"

INITIAL_PAGE = "initial"


def build_queue_configs(settings: Settings = default_settings) -> Dict[str, QueueConfig]:
    retention = settings.JOB_RETENTION_SECONDS
    lock = settings.JOB_LOCK_SECONDS
    return {
        # Notion allows ~3 requests/second per integration
        NOTION_SYNC_QUEUE: QueueConfig(
            name=NOTION_SYNC_QUEUE,
            rate_limit=RateLimit(max_jobs=3, duration=1),
            retry=RetryPolicy(attempts=3, backoff="exponential", delay=2),
            job_retention_seconds=retention,
            lock_duration=lock,
        ),
        NOTION_PAGE_FETCH_QUEUE: QueueConfig(
            name=NOTION_PAGE_FETCH_QUEUE,
            rate_limit=RateLimit(max_jobs=3, duration=1),
            retry=RetryPolicy(attempts=3, backoff="exponential", delay=1),
            job_retention_seconds=retention,
            lock_duration=lock,
        ),
        # Sheets API: 300 requests/minute per project
        GOOGLE_SHEETS_QUEUE: QueueConfig(
            name=GOOGLE_SHEETS_QUEUE,
            rate_limit=RateLimit(max_jobs=300, duration=60),
            retry=RetryPolicy(attempts=3, backoff="exponential", delay=1),
            job_retention_seconds=retention,
            lock_duration=lock,
        ),
        MAPPING_SYNC_QUEUE: QueueConfig(
            name=MAPPING_SYNC_QUEUE,
            rate_limit=RateLimit(max_jobs=300, duration=60),
            retry=RetryPolicy(attempts=3, backoff="exponential", delay=1),
            job_retention_seconds=retention,
            lock_duration=lock,
        ),
    }


class SyncQueues:
    """
    The pipeline's queues, built once per process and passed explicitly.

    Usage:
        queues = SyncQueues(redis)
        await queues.enqueue_fetch_page(12, page_id, "page.created", timestamp)
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        settings: Settings = default_settings,
        configs: Optional[Dict[str, QueueConfig]] = None,
    ):
        self.redis = redis
        configs = configs or build_queue_configs(settings)
        prefix = settings.QUEUE_KEY_PREFIX

        self.notion_sync = JobQueue(redis, configs[NOTION_SYNC_QUEUE], prefix)
        self.notion_page_fetch = JobQueue(redis, configs[NOTION_PAGE_FETCH_QUEUE], prefix)
        self.google_sheets = JobQueue(redis, configs[GOOGLE_SHEETS_QUEUE], prefix)
        self.mapping_sync = JobQueue(redis, configs[MAPPING_SYNC_QUEUE], prefix)

    def all(self) -> Dict[str, JobQueue]:
        return {
            NOTION_SYNC_QUEUE: self.notion_sync,
            NOTION_PAGE_FETCH_QUEUE: self.notion_page_fetch,
            GOOGLE_SHEETS_QUEUE: self.google_sheets,
            MAPPING_SYNC_QUEUE: self.mapping_sync,
        }

    async def get_counts(self) -> Dict[str, Dict[str, int]]:
        return {name: await queue.get_counts() for name, queue in self.all().items()}

    # ------------------------------------------------------------------
    # notion-sync
    # ------------------------------------------------------------------

    async def enqueue_sync(
        self, user_id: str, notion_account_id: int, pass_id: str, cursor: Optional[str] = None
    ) -> Optional[Job]:
        payload = SyncJobData(
            user_id=user_id, notion_account_id=notion_account_id, pass_id=pass_id, cursor=cursor
        )
        job_id = f"notion-sync-{user_id}-{pass_id}-{cursor or INITIAL_PAGE}"
        return await self.notion_sync.add(payload.job_type, payload.model_dump(), job_id)

    async def enqueue_import(
        self,
        automation_id: int,
        database_id: str,
        import_key: str,
        cursor: Optional[str] = None,
        fetched_before: int = 0,
    ) -> Optional[Job]:
        payload = ImportJobData(
            automation_id=automation_id,
            database_id=database_id,
            import_key=import_key,
            cursor=cursor,
            fetched_before=fetched_before,
        )
        job_id = f"notion-import-{automation_id}-{import_key}-{cursor or INITIAL_PAGE}"
        return await self.notion_sync.add(payload.job_type, payload.model_dump(), job_id)

    # ------------------------------------------------------------------
    # notion-page-fetch
    # ------------------------------------------------------------------

    async def enqueue_fetch_page(
        self, automation_id: int, page_id: str, event_type: str, event_timestamp: str
    ) -> Optional[Job]:
        payload = FetchPageJobData(
            automation_id=automation_id,
            page_id=page_id,
            event_type=event_type,
            event_timestamp=event_timestamp,
        )
        job_id = f"notion-page-fetch-{automation_id}-{page_id}-{event_timestamp}"
        return await self.notion_page_fetch.add(payload.job_type, payload.model_dump(), job_id)

    # ------------------------------------------------------------------
    # google-sheets
    # ------------------------------------------------------------------

    async def enqueue_list_spreadsheets(
        self, google_sheets_account_id: int, pass_id: str, page_token: Optional[str] = None
    ) -> Optional[Job]:
        payload = ListSpreadsheetsJobData(
            google_sheets_account_id=google_sheets_account_id, pass_id=pass_id, page_token=page_token
        )
        job_id = f"fetch-googlesheets-{google_sheets_account_id}-{pass_id}-{page_token or INITIAL_PAGE}"
        return await self.google_sheets.add(payload.job_type, payload.model_dump(), job_id)

    async def enqueue_write_headers(self, automation_id: int, import_key: str) -> Optional[Job]:
        payload = WriteHeadersJobData(automation_id=automation_id)
        job_id = f"write-headers-{automation_id}-{import_key}"
        return await self.google_sheets.add(payload.job_type, payload.model_dump(), job_id)

    async def enqueue_write_row(
        self,
        automation_id: int,
        page_id: str,
        event_type: str,
        version: str,
        import_key: Optional[str] = None,
    ) -> Optional[Job]:
        """
        ``version`` is the page's last_edited_time; an import passes its
        import_key so a fresh import rewrites rows a previous one wrote.
        """
        payload = WriteRowJobData(automation_id=automation_id, page_id=page_id, event_type=event_type)
        job_id = f"write-row-{automation_id}-{page_id}-{version}"
        if import_key:
            job_id = f"{job_id}-import-{import_key}"
        return await self.google_sheets.add(payload.job_type, payload.model_dump(), job_id)

    async def enqueue_delete_row(self, automation_id: int, page_id: str, timestamp: str) -> Optional[Job]:
        payload = DeleteRowJobData(automation_id=automation_id, page_id=page_id)
        job_id = f"delete-row-{automation_id}-{page_id}-{timestamp}"
        return await self.google_sheets.add(payload.job_type, payload.model_dump(), job_id)

    # ------------------------------------------------------------------
    # mapping-sync (legacy)
    # ------------------------------------------------------------------

    async def enqueue_mapping_sync(
        self,
        automation_id: int,
        sync_type: str,
        version: str,
        page_id: Optional[str] = None,
        event_type: Optional[str] = None,
    ) -> Optional[Job]:
        payload = MappingSyncJobData(
            automation_id=automation_id, sync_type=sync_type, page_id=page_id, event_type=event_type
        )
        job_id = f"mapping-sync-{automation_id}-{sync_type}-{page_id or 'all'}-{version}"
        return await self.mapping_sync.add(payload.job_type, payload.model_dump(), job_id)
