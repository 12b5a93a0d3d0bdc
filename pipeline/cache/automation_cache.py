"""
Redis cache of active automations, read by the cron trigger on every tick
"""

from typing import List
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
import redis.asyncio as aioredis
from models.automation import Automation
from schemas.automation import AutomationSnapshot
import logging

logger = logging.getLogger(__name__)

AUTOMATIONS_KEY = "automations"


class AutomationCache:
    """
    Redis hash ``automations``: automation id → AutomationSnapshot JSON.

    Populated from the database at startup (and by the trigger when it
    finds the hash empty), then kept current by add_or_update/remove.
    """

    def __init__(self, redis: aioredis.Redis, key: str = AUTOMATIONS_KEY):
        self.redis = redis
        self.key = key

    async def populate(self, db_session: AsyncSession) -> int:
        """Replace the cache with every active automation. Returns the count."""
        result = await db_session.execute(
            select(Automation).where(Automation.is_active.is_(True))
        )
        automations = result.scalars().all()

        mapping = {
            str(automation.id): AutomationSnapshot.from_orm(automation).model_dump_json()
            for automation in automations
        }

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.delete(self.key)
            if mapping:
                pipe.hset(self.key, mapping=mapping)
            await pipe.execute()

        logger.info(f"Automation cache populated with {len(mapping)} active automations")
        return len(mapping)

    async def get_all(self) -> List[AutomationSnapshot]:
        raw = await self.redis.hgetall(self.key)

        snapshots = []
        for automation_id, payload in raw.items():
            try:
                snapshots.append(AutomationSnapshot.model_validate_json(payload))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable cache entry for automation {automation_id}: {str(e)}")
                await self.redis.hdel(self.key, automation_id)
        return snapshots

    async def add_or_update(self, snapshot: AutomationSnapshot):
        await self.redis.hset(self.key, str(snapshot.id), snapshot.model_dump_json())

    async def remove(self, automation_id: int):
        await self.redis.hdel(self.key, str(automation_id))
