"""
Synchronization pipeline from Notion databases to Google Sheets.

Modules:
    context: PipelineContext, the collaborators shared by every component
    webhook: Webhook ingress (verify, resolve, dispatch)
    trigger: Cron trigger over the Redis automation cache
    scheduler: APScheduler integration running the trigger periodically
    imports: User-triggered bulk import entry point
    import_tracker: Bulk-import state machine with atomic progress counters
    checksum: Row value vectors and checksums for no-op detection
    automation_data: Loading an automation with its mapping and destination

Subpackages:
    transformers: Notion property → cell value transformation
    clients: httpx clients for Notion, Google Sheets and Google Drive
    cache: Entity cache (database) and automation cache (Redis)
    queues: Redis job queues with dedup, retries and rate limiting
    workers: One consumer per queue plus the worker pool

Architecture:
    Webhook ingress or the cron trigger enqueue jobs; workers fetch from
    Notion into the entity cache and write rows to Google Sheets:

    1. notion-sync: account crawl (sync) and bulk import pages (import)
    2. notion-page-fetch: refresh one page, hand it to the writer
    3. google-sheets: write-row / delete-row / write-headers /
       list-spreadsheets
    4. mapping-sync: legacy writer using the row-mapping table

    Job ids are derived from the work itself, so re-enqueued work is
    deduplicated by the queue, and the row checksum turns stale or repeated
    writes into no-ops.

Usage:
    from pipeline.context import PipelineContext
    from pipeline.workers.pool import WorkerPool, build_workers

Example:
    ctx = PipelineContext(async_session_maker, create_redis(settings))

    pool = WorkerPool(build_workers(ctx))
    pool.start()
    await pool.wait()

Error Handling:
    Handlers raise exceptions from core.exceptions; workers wrap them in
    JobError and the queue schedules retries with exponential backoff.
    Only retry exhaustion marks a job (and an import) as failed.
"""

__all__ = [
    "PipelineContext",
    "WebhookHandler",
    "AutomationTrigger",
    "SyncScheduler",
    "ImportStateTracker",
    "start_bulk_import",
    "compute_row_checksum",
]
