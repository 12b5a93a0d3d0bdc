"""
FastAPI dependencies
"""

from typing import AsyncGenerator
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession
from core.database import async_session_maker
from pipeline.context import PipelineContext


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Database session per request"""
    async with async_session_maker() as session:
        yield session


def get_context(request: Request) -> PipelineContext:
    """Pipeline context built at application startup"""
    return request.app.state.ctx
