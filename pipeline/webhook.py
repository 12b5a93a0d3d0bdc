"""
Notion webhook ingress.

Every delivery is answered with a WebhookResponse; apart from a failed
production signature check nothing is reported to Notion as an HTTP error,
because failed deliveries are retried by Notion indefinitely.
"""

from typing import Optional, Tuple
import hashlib
import hmac
import json
from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from core.exceptions import SignatureVerificationError, WebhookPayloadError
from models.automation import Automation
from models.base import EntityType
from pipeline.cache.entity_cache import EntityCache
from pipeline.context import PipelineContext
from pipeline.queues.base import Job
from pipeline.queues.definitions import GOOGLE_SHEETS_QUEUE, MAPPING_SYNC_QUEUE, NOTION_PAGE_FETCH_QUEUE
from schemas.webhook import (
    FETCH_EVENT_TYPES,
    SCHEMA_EVENT_TYPES,
    NotionWebhookEvent,
    NotionWebhookPayload,
    NotionWebhookVerification,
    WebhookEventType,
    WebhookResponse,
)
import logging

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Notion-Signature"
SIGNATURE_PREFIX = "sha256="

payload_adapter = TypeAdapter(NotionWebhookPayload)


def compute_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def parse_payload(raw_body: bytes) -> NotionWebhookPayload:
    try:
        return payload_adapter.validate_python(json.loads(raw_body or b"null"))
    except (ValueError, ValidationError) as e:
        # json.JSONDecodeError is a ValueError
        raise WebhookPayloadError(
            "Unparseable webhook payload",
            context={"body_bytes": len(raw_body or b"")},
            original_exception=e,
        )


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Constant-time comparison of ``sha256=<hex>`` against the expected HMAC"""
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_signature(raw_body, secret), signature.strip())


class WebhookHandler:
    """
    Parse, verify, resolve and dispatch one webhook delivery.

    Usage:
        handler = WebhookHandler(ctx)
        response = await handler.handle(raw_body, request.headers.get(SIGNATURE_HEADER))

    Raises:
        SignatureVerificationError: production delivery with a missing or
            wrong signature (the route turns this into 401)
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx

    def check_signature(self, raw_body: bytes, signature: Optional[str]):
        settings = self.ctx.settings
        if verify_signature(raw_body, signature, settings.NOTION_WEBHOOK_SECRET):
            return

        if settings.is_production:
            raise SignatureVerificationError(
                "Missing or invalid webhook signature",
                context={"signature_present": bool(signature)},
            )
        logger.warning(
            f"Webhook signature not verified (environment={settings.ENVIRONMENT}, "
            f"signature_present={bool(signature)}), accepting delivery"
        )

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResponse:
        try:
            payload = parse_payload(raw_body)
        except WebhookPayloadError as e:
            logger.warning(f"Ignoring webhook delivery: {str(e)[:500]}")
            return WebhookResponse(status="skipped", reason="invalid_payload")

        if isinstance(payload, NotionWebhookVerification):
            # Notion shows the token to the integration owner, who pastes it back
            logger.info(f"Webhook verification token received: {payload.verification_token}")
            return WebhookResponse(status="ok", message="verification token received")

        self.check_signature(raw_body, signature)

        try:
            return await self.dispatch(payload)
        except Exception as e:
            logger.error(
                f"Webhook event {payload.id} ({payload.type.value}) could not be handled: {str(e)}",
                exc_info=True,
            )
            return WebhookResponse(status="error", reason="internal_error", message=str(e))

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_container_id(self, event: NotionWebhookEvent) -> Optional[str]:
        """Notion id of the database the event belongs to"""
        if event.entity.type == "database":
            return event.entity.id
        if event.parent_id:
            return event.parent_id

        # No parent in the payload: fall back to the cached copy of the page
        async with self.ctx.session_factory() as session:
            entity = await EntityCache(session).get_by_notion_id(event.entity.id)
        return entity.parent_id if entity else None

    async def resolve_automation(self, event: NotionWebhookEvent) -> Tuple[Optional[Automation], Optional[str]]:
        """
        Returns:
            (automation, None) or (None, skip reason)
        """
        container_id = await self.resolve_container_id(event)
        if not container_id:
            return None, "no_parent"

        async with self.ctx.session_factory() as session:
            container = await EntityCache(session).get_by_notion_id(container_id)
            if container is None or container.type != EntityType.DATABASE:
                return None, "unknown_container"

            result = await session.execute(
                select(Automation)
                .where(Automation.source_entity_id == container.id)
                .order_by(Automation.is_active.desc(), Automation.id)
                .limit(1)
            )
            automation = result.scalar_one_or_none()

        if automation is None:
            return None, "no_automation"
        if not automation.is_active:
            return automation, "automation_inactive"
        return automation, None

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def dispatch(self, event: NotionWebhookEvent) -> WebhookResponse:
        event_type = event.type

        if event_type in SCHEMA_EVENT_TYPES:
            logger.info(f"Schema change {event_type.value} for {event.entity.id} logged, no action taken")
            return WebhookResponse(status="skipped", reason="schema_change_not_handled")

        if event_type not in FETCH_EVENT_TYPES and event_type != WebhookEventType.PAGE_DELETED:
            logger.info(f"Skipping unsupported webhook event {event_type.value} for {event.entity.id}")
            return WebhookResponse(status="skipped", reason="unsupported_event_type")

        automation, reason = await self.resolve_automation(event)
        if reason is not None:
            automation_id = automation.id if automation else None
            logger.info(
                f"[automation {automation_id}] Skipping {event_type.value} for page {event.entity.id}: {reason}"
            )
            return WebhookResponse(status="skipped", reason=reason, automation_id=automation_id)

        page_id = event.entity.id
        queues = self.ctx.queues

        if event_type == WebhookEventType.PAGE_DELETED:
            if automation.use_row_mapping:
                queue_name = MAPPING_SYNC_QUEUE
                job = await queues.enqueue_mapping_sync(
                    automation.id, "delete", event.timestamp, page_id=page_id, event_type=event_type.value
                )
            else:
                queue_name = GOOGLE_SHEETS_QUEUE
                job = await queues.enqueue_delete_row(automation.id, page_id, event.timestamp)
        else:
            queue_name = NOTION_PAGE_FETCH_QUEUE
            job = await queues.enqueue_fetch_page(automation.id, page_id, event_type.value, event.timestamp)

        return self._queued(automation.id, event, queue_name, job)

    def _queued(self, automation_id: int, event: NotionWebhookEvent, queue_name: str, job: Optional[Job]):
        if job is None:
            logger.info(
                f"[automation {automation_id}] Duplicate {event.type.value} delivery for page {event.entity.id}"
            )
            return WebhookResponse(
                status="skipped", reason="duplicate_job", automation_id=automation_id, queue=queue_name
            )

        logger.info(
            f"[automation {automation_id}] Queued {job.name} job {job.id} for {event.type.value} "
            f"on page {event.entity.id}"
        )
        return WebhookResponse(status="queued", automation_id=automation_id, job_id=job.id, queue=queue_name)
