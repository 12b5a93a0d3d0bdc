"""
Notion webhook endpoint
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from api.dependencies import get_context
from core.exceptions import SignatureVerificationError
from pipeline.context import PipelineContext
from pipeline.webhook import SIGNATURE_HEADER, WebhookHandler
from schemas.webhook import WebhookResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/notion", response_model=WebhookResponse, response_model_exclude_none=True)
async def notion_webhook(request: Request, ctx: PipelineContext = Depends(get_context)):
    """
    Receive a Notion webhook delivery.

    Always answers 200 with a status/reason body, except for 401 when a
    production delivery fails signature verification.
    """
    request_id = getattr(request.state, "request_id", None)
    raw_body = await request.body()

    try:
        response = await WebhookHandler(ctx).handle(raw_body, request.headers.get(SIGNATURE_HEADER))
    except SignatureVerificationError as e:
        logger.warning(f"[{request_id}] POST /webhooks/notion rejected: {e.message}")
        raise HTTPException(status_code=401, detail=e.message)

    logger.info(f"[{request_id}] POST /webhooks/notion → {response.status} {response.reason or ''}".rstrip())
    return response
