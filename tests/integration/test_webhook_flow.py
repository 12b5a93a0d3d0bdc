"""
Integration tests for incremental sync: webhook → notion-page-fetch →
google-sheets write-row / delete-row
"""

import json
import pytest
import pytest_asyncio
from models.notion_entity import NotionEntity
from pipeline.imports import start_bulk_import
from pipeline.queues.base import JobStatus
from pipeline.webhook import WebhookHandler, compute_signature
from pipeline.workers.google_sheets import GoogleSheetsWorker, find_identity_row
from schemas.mapping import MappingConfig
from sqlalchemy import select


async def deliver(ctx, event_type, page_id, timestamp, parent_id="db1"):
    body = json.dumps({
        "id": f"evt-{page_id}-{timestamp}",
        "type": event_type,
        "entity": {"id": page_id, "type": "page"},
        "workspace_id": "ws-1",
        "timestamp": timestamp,
        "data": {"parent": {"id": parent_id, "type": "database"}},
    }).encode("utf-8")
    signature = compute_signature(body, ctx.settings.NOTION_WEBHOOK_SECRET)
    return await WebhookHandler(ctx).handle(body, signature)


async def downstream_result(ctx, fetch_job_id):
    fetch_job = await ctx.queues.notion_page_fetch.get_job(fetch_job_id)
    write_job = await ctx.queues.google_sheets.get_job(fetch_job.result["downstream_job_id"])
    return write_job.result


@pytest_asyncio.fixture
async def imported(ctx, seeded, fake_notion, make_page, run_pipeline):
    """Three rows already in the sheet"""
    for n in range(1, 4):
        fake_notion.add_page(make_page(f"r{n}", name=f"Task {n}"))
    await start_bulk_import(ctx, seeded.automation_id)
    await run_pipeline()
    return seeded


class TestPageUpdates:

    @pytest.mark.asyncio
    async def test_update_rewrites_row_in_place(self, ctx, imported, fake_notion, fake_sheets, make_page, run_pipeline):
        row_number = next(n for n, row in fake_sheets.data_rows().items() if row[4] == "r2")
        fake_notion.add_page(make_page("r2", name="Task 2", status="Done", edited="2024-01-16T09:00:00.000Z"))

        response = await deliver(ctx, "page.properties_updated", "r2", "2024-01-16T09:00:00.000Z")
        assert response.status == "queued"
        await run_pipeline()

        result = await downstream_result(ctx, response.job_id)
        assert result["outcome"] == "updated"
        assert result["rows_updated"] == 1
        assert result["row_number"] == row_number

        assert fake_sheets.row(row_number)[1] == "Done"
        assert len(fake_sheets.data_rows()) == 3

    @pytest.mark.asyncio
    async def test_unchanged_page_skips_the_write(self, ctx, imported, fake_sheets, run_pipeline):
        writes_before = len(fake_sheets.writes)

        response = await deliver(ctx, "page.content_updated", "r1", "2024-01-16T09:00:00.000Z")
        await run_pipeline()

        result = await downstream_result(ctx, response.job_id)
        assert result["outcome"] == "unchanged"
        assert result["rows_unchanged"] == 1
        assert len(fake_sheets.writes) == writes_before

    @pytest.mark.asyncio
    async def test_created_page_is_appended(self, ctx, imported, fake_notion, fake_sheets, make_page, run_pipeline):
        fake_notion.add_page(make_page("r4", name="Task 4"))

        response = await deliver(ctx, "page.created", "r4", "2024-01-16T09:00:00.000Z")
        await run_pipeline()

        result = await downstream_result(ctx, response.job_id)
        assert result["outcome"] == "created"
        assert fake_sheets.row(result["row_number"])[4] == "r4"
        assert len(fake_sheets.data_rows()) == 4

    @pytest.mark.asyncio
    async def test_same_version_is_written_once(self, ctx, seeded, fake_notion, fake_sheets, make_page, run_pipeline):
        fake_notion.add_page(make_page("r1"))

        first = await deliver(ctx, "page.created", "r1", "2024-01-16T09:00:00.000Z")
        second = await deliver(ctx, "page.properties_updated", "r1", "2024-01-16T09:00:01.000Z")
        assert first.status == second.status == "queued"
        await run_pipeline()

        # Both fetches saw the same last_edited_time, so one write-row job
        first_result = (await ctx.queues.notion_page_fetch.get_job(first.job_id)).result
        second_result = (await ctx.queues.notion_page_fetch.get_job(second.job_id)).result
        assert first_result["downstream_job_id"] is not None
        assert second_result["downstream_job_id"] is None
        assert len([w for w in fake_sheets.writes if w[0] == "append"]) == 1

    @pytest.mark.asyncio
    async def test_concurrent_versions_of_one_page_keep_one_row(
        self, ctx, seeded, fake_notion, fake_sheets, make_page, session_factory
    ):
        from pipeline.cache.entity_cache import EntityCache

        async with session_factory() as session:
            await EntityCache(session).upsert([make_page("r1", status="Todo")])

        await ctx.queues.enqueue_write_row(seeded.automation_id, "r1", "page.created", version="v1")
        await ctx.queues.enqueue_write_row(seeded.automation_id, "r1", "page.properties_updated", version="v2")
        await GoogleSheetsWorker(ctx, ctx.queues.google_sheets).drain()

        rows = fake_sheets.data_rows()
        assert len(rows) == 1
        assert list(rows.values())[0][4] == "r1"


class TestPageDeletes:

    @pytest.mark.asyncio
    async def test_delete_clears_row_and_tombstones_page(
        self, ctx, imported, fake_sheets, session_factory, run_pipeline
    ):
        row_number = next(n for n, row in fake_sheets.data_rows().items() if row[4] == "r3")

        response = await deliver(ctx, "page.deleted", "r3", "2024-01-16T09:00:00.000Z")
        assert response.queue == "google-sheets"
        await run_pipeline()

        job = await ctx.queues.google_sheets.get_job(response.job_id)
        assert job.result == {"status": "deleted", "rows_deleted": 1, "row_number": row_number}
        assert fake_sheets.row(row_number) == []
        assert len(fake_sheets.data_rows()) == 2

        async with session_factory() as session:
            result = await session.execute(select(NotionEntity).where(NotionEntity.notion_id == "r3"))
            assert result.scalar_one().archived is True

    @pytest.mark.asyncio
    async def test_delete_of_unknown_row(self, ctx, imported, fake_sheets, run_pipeline):
        writes_before = len(fake_sheets.writes)

        response = await deliver(ctx, "page.deleted", "never-synced", "2024-01-16T09:00:00.000Z")
        await run_pipeline()

        job = await ctx.queues.google_sheets.get_job(response.job_id)
        assert job.result["status"] == "not_found"
        assert job.result["rows_deleted"] == 0
        assert len(fake_sheets.writes) == writes_before

    @pytest.mark.asyncio
    async def test_restored_page_is_written_again(
        self, ctx, imported, fake_sheets, run_pipeline
    ):
        await deliver(ctx, "page.deleted", "r1", "2024-01-16T09:00:00.000Z")
        await run_pipeline()
        assert len(fake_sheets.data_rows()) == 2

        await deliver(ctx, "page.restored", "r1", "2024-01-16T09:05:00.000Z")
        await run_pipeline()

        assert sorted(row[4] for row in fake_sheets.data_rows().values()) == ["r1", "r2", "r3"]


class TestFetchFailures:

    @pytest.mark.asyncio
    async def test_missing_page_fails_fetch_after_retries(self, ctx, seeded, run_pipeline):
        response = await deliver(ctx, "page.created", "gone", "2024-01-16T09:00:00.000Z")
        await run_pipeline()

        job = await ctx.queues.notion_page_fetch.get_job(response.job_id)
        assert job.status == JobStatus.FAILED
        assert "ResourceNotFoundError" in job.failed_reason
        assert (await ctx.queues.google_sheets.get_counts())["completed"] == 0


class TestWithoutIdentityColumn:

    @pytest.mark.asyncio
    async def test_last_sync_cell_is_not_read_as_identity(self, fake_sheets, mapping_config):
        mapping = MappingConfig.model_validate({**mapping_config, "includeNotionId": False, "includeLastSync": True})
        # Last Synced sits where the identity column would be
        fake_sheets.grid()[2] = ["Task", "Todo", 1, "", "r1"]

        async with fake_sheets.client(None) as client:
            found = await find_identity_row(client, "sheet-1", mapping, "r1", scan_rows=100)

        assert found == (None, None)
