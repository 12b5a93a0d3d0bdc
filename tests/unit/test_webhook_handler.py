"""
Unit tests for webhook parsing, signature verification and resolution
"""

import json
import pytest
from sqlalchemy import update
from core.exceptions import SignatureVerificationError, WebhookPayloadError
from models.automation import Automation
from pipeline.context import PipelineContext
from pipeline.webhook import WebhookHandler, compute_signature, parse_payload, verify_signature


def event_body(event_type="page.content_updated", page_id="r1", parent_id="db1", timestamp="2024-01-15T10:00:00.000Z"):
    body = {
        "id": "evt-1",
        "type": event_type,
        "entity": {"id": page_id, "type": "page"},
        "workspace_id": "ws-1",
        "timestamp": timestamp,
        "data": {"parent": {"id": parent_id, "type": "database"}} if parent_id else {},
    }
    return json.dumps(body).encode("utf-8")


def signed(ctx, body):
    return compute_signature(body, ctx.settings.NOTION_WEBHOOK_SECRET)


class TestSignature:

    def test_valid_signature(self):
        body = b'{"a":1}'
        assert verify_signature(body, compute_signature(body, "s3cret"), "s3cret")

    def test_invalid_or_missing_signature(self):
        body = b'{"a":1}'
        assert not verify_signature(body, compute_signature(body, "other"), "s3cret")
        assert not verify_signature(body, None, "s3cret")
        assert not verify_signature(body, compute_signature(body, "s3cret"), None)

    def test_signature_format(self):
        assert compute_signature(b"x", "k").startswith("sha256=")


class TestPayloadHandling:

    @pytest.mark.asyncio
    async def test_verification_handshake(self, ctx):
        response = await WebhookHandler(ctx).handle(b'{"verification_token": "tok_123"}', None)
        assert response.status == "ok"

    @pytest.mark.asyncio
    async def test_invalid_json_is_acknowledged(self, ctx):
        response = await WebhookHandler(ctx).handle(b"{not json", None)
        assert response.status == "skipped"
        assert response.reason == "invalid_payload"

    @pytest.mark.asyncio
    async def test_schema_invalid_payload_is_acknowledged(self, ctx):
        response = await WebhookHandler(ctx).handle(b'{"id": "evt", "type": "page.exploded"}', None)
        assert response.reason == "invalid_payload"

    @pytest.mark.parametrize("body", [b"{not json", b"", b"[1, 2]"])
    def test_parse_payload_raises_payload_error(self, body):
        with pytest.raises(WebhookPayloadError) as exc_info:
            parse_payload(body)
        assert exc_info.value.context["body_bytes"] == len(body)
        assert exc_info.value.original_exception is not None


class TestResolution:

    @pytest.mark.asyncio
    async def test_update_event_enqueues_page_fetch(self, ctx, seeded):
        body = event_body()
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))

        assert response.status == "queued"
        assert response.automation_id == seeded.automation_id
        assert response.queue == "notion-page-fetch"

        job = await ctx.queues.notion_page_fetch.fetch_next()
        assert job.id == response.job_id
        assert job.data["event_type"] == "page.content_updated"
        assert job.data["page_id"] == "r1"

    @pytest.mark.asyncio
    async def test_delete_event_enqueues_delete_row(self, ctx, seeded):
        body = event_body(event_type="page.deleted")
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))

        assert response.queue == "google-sheets"
        job = await ctx.queues.google_sheets.fetch_next()
        assert job.name == "delete-row"
        assert (await ctx.queues.notion_page_fetch.get_counts())["waiting"] == 0

    @pytest.mark.asyncio
    async def test_unknown_container(self, ctx, seeded):
        body = event_body(parent_id="some-other-db")
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))

        assert response.status == "skipped"
        assert response.reason == "unknown_container"

    @pytest.mark.asyncio
    async def test_container_without_automation(self, ctx, seeded, session_factory):
        async with session_factory() as session:
            await session.execute(update(Automation).values(source_entity_id=None))
            await session.commit()

        body = event_body()
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))
        assert response.reason == "no_automation"

    @pytest.mark.asyncio
    async def test_inactive_automation(self, ctx, seeded, session_factory):
        async with session_factory() as session:
            await session.execute(update(Automation).values(is_active=False))
            await session.commit()

        body = event_body()
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))
        assert response.reason == "automation_inactive"
        assert response.automation_id == seeded.automation_id

    @pytest.mark.asyncio
    async def test_parent_falls_back_to_cached_page(self, ctx, seeded, session_factory, make_page):
        from pipeline.cache.entity_cache import EntityCache

        async with session_factory() as session:
            await EntityCache(session).upsert([make_page("r1")])

        body = event_body(parent_id=None)
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))
        assert response.status == "queued"

    @pytest.mark.asyncio
    async def test_schema_change_is_logged_only(self, ctx, seeded):
        body = event_body(event_type="database.schema_updated")
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))
        assert response.reason == "schema_change_not_handled"

    @pytest.mark.asyncio
    async def test_unsupported_event(self, ctx, seeded):
        body = event_body(event_type="comment.created")
        response = await WebhookHandler(ctx).handle(body, signed(ctx, body))
        assert response.reason == "unsupported_event_type"

    @pytest.mark.asyncio
    async def test_duplicate_delivery(self, ctx, seeded):
        body = event_body()
        handler = WebhookHandler(ctx)

        first = await handler.handle(body, signed(ctx, body))
        second = await handler.handle(body, signed(ctx, body))

        assert first.status == "queued"
        assert second.reason == "duplicate_job"
        assert (await ctx.queues.notion_page_fetch.get_counts())["waiting"] == 1


class TestProductionSignature:

    @pytest.fixture
    def production_ctx(self, ctx, test_settings):
        settings = test_settings.model_copy(update={"ENVIRONMENT": "production"})
        return PipelineContext(ctx.session_factory, ctx.redis, settings, queues=ctx.queues)

    @pytest.mark.asyncio
    async def test_missing_signature_rejected(self, production_ctx, seeded):
        with pytest.raises(SignatureVerificationError):
            await WebhookHandler(production_ctx).handle(event_body(), None)

        assert (await production_ctx.queues.notion_page_fetch.get_counts())["waiting"] == 0

    @pytest.mark.asyncio
    async def test_wrong_signature_rejected(self, production_ctx, seeded):
        body = event_body()
        with pytest.raises(SignatureVerificationError):
            await WebhookHandler(production_ctx).handle(body, compute_signature(body, "wrong"))

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(self, production_ctx, seeded):
        body = event_body()
        response = await WebhookHandler(production_ctx).handle(body, signed(production_ctx, body))
        assert response.status == "queued"

    @pytest.mark.asyncio
    async def test_non_production_accepts_unsigned(self, ctx, seeded):
        response = await WebhookHandler(ctx).handle(event_body(), None)
        assert response.status == "queued"
