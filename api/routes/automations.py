"""
Bulk import endpoints: start an import and poll its progress
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_context
from core.exceptions import AutomationNotFoundError, ConfigurationError, ImportInProgressError
from models.automation import Automation
from models.base import ImportStatus
from pipeline.context import PipelineContext
from pipeline.imports import start_bulk_import
from schemas.api import ImportStartResponse, ImportStatusResponse
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/automations", tags=["Automations"])


@router.post("/{automation_id}/import", response_model=ImportStartResponse, status_code=202)
async def start_import(
    automation_id: int,
    request: Request,
    ctx: PipelineContext = Depends(get_context)
):
    """
    Start a bulk import of the automation's source database.

    Errors:
    - 404: unknown automation
    - 409: an import is already running
    - 422: accounts, spreadsheet, source database or mapping missing
    """
    request_id = getattr(request.state, "request_id", None)
    logger.info(f"[{request_id}] POST /automations/{automation_id}/import")

    try:
        started_at, job = await start_bulk_import(ctx, automation_id)
    except AutomationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ImportInProgressError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ConfigurationError as e:
        logger.warning(f"[{request_id}] Import of automation {automation_id} rejected: {e.message}")
        raise HTTPException(status_code=422, detail=e.message)

    return ImportStartResponse(
        automation_id=automation_id,
        import_status=ImportStatus.IMPORTING,
        import_started_at=started_at,
        job_id=job.id if job else None
    )


@router.get("/{automation_id}/import", response_model=ImportStatusResponse)
async def get_import_status(automation_id: int, db: AsyncSession = Depends(get_db)):
    """Import progress, polled by the dashboard"""
    automation = await db.get(Automation, automation_id)
    if automation is None:
        raise HTTPException(status_code=404, detail=f"Automation {automation_id} not found")

    return ImportStatusResponse.from_orm(automation)
