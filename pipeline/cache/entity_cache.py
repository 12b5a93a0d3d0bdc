"""
Durable cache of fetched Notion pages and databases (notion_entities)
"""

from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from core.database import upsert_insert
from models.base import EntityType
from models.notion_entity import NotionEntity
import logging

logger = logging.getLogger(__name__)

_PARENT_ID_KEYS = ("database_id", "data_source_id", "page_id", "block_id")


def parse_notion_timestamp(value: Optional[str]) -> Optional[datetime]:
    """ISO 8601 (``2024-01-15T10:00:00.000Z``) → naive UTC datetime"""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class EntityCache:
    """
    Upsert and read cached Notion records.

    Ensures:
    - One row per notion_id (INSERT ... ON CONFLICT)
    - Conflicts overwrite parent/type/title/archived/last-edited/payload
      and keep identity (notion_id, account, workspace, created_time)
    """

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    @staticmethod
    def get_parent_id(record: Dict[str, Any]) -> Optional[str]:
        """Parent container id of a Notion record; None for workspace-level records."""
        parent = record.get("parent") or {}
        for key in _PARENT_ID_KEYS:
            if parent.get(key):
                return parent[key]
        return None

    @staticmethod
    def get_title(record: Dict[str, Any]) -> str:
        """Plain-text title of a page (its title property) or a database."""
        if record.get("object") == "database":
            fragments = record.get("title") or []
        else:
            fragments = []
            for prop in (record.get("properties") or {}).values():
                if isinstance(prop, dict) and prop.get("type") == "title":
                    fragments = prop.get("title") or []
                    break
        return "".join(fragment.get("plain_text") or "" for fragment in fragments)

    @staticmethod
    def get_entity_type(record: Dict[str, Any]) -> Optional[EntityType]:
        obj = record.get("object")
        if obj == "page":
            return EntityType.PAGE
        if obj in ("database", "data_source"):
            return EntityType.DATABASE
        return None

    async def upsert(
        self,
        records: List[Dict[str, Any]],
        account_id: Optional[int] = None,
        workspace_id: Optional[str] = None,
        parent_id: Optional[str] = None,
    ) -> int:
        """
        Upsert raw Notion records.

        Args:
            records: Page/database objects as returned by the Notion API
            account_id: Owning Notion account
            workspace_id: Owning workspace
            parent_id: Overrides the parent read from each record (imports
                pass the queried database id)

        Returns:
            Number of records upserted
        """
        if not records:
            return 0

        upserted = 0
        now = datetime.utcnow()

        for record in records:
            entity_type = self.get_entity_type(record)
            if entity_type is None or not record.get("id"):
                logger.debug(f"Skipping non-cacheable Notion object: {record.get('object')}")
                continue

            title = self.get_title(record)
            values = {
                "notion_id": record["id"],
                "parent_id": parent_id or self.get_parent_id(record),
                "type": entity_type,
                "account_id": account_id,
                "workspace_id": workspace_id,
                "archived": bool(record.get("archived") or record.get("in_trash")),
                "title_plain": title[:2000] if title else None,
                "created_time": parse_notion_timestamp(record.get("created_time")),
                "last_edited_time": parse_notion_timestamp(record.get("last_edited_time")),
                "properties_json": record,
                "created_at": now,
                "updated_at": now,
            }

            stmt = upsert_insert(self.db, NotionEntity).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["notion_id"],
                set_={
                    "parent_id": stmt.excluded.parent_id,
                    "type": stmt.excluded.type,
                    "title_plain": stmt.excluded.title_plain,
                    "archived": stmt.excluded.archived,
                    "last_edited_time": stmt.excluded.last_edited_time,
                    "properties_json": stmt.excluded.properties_json,
                    "updated_at": stmt.excluded.updated_at,
                }
            )

            await self.db.execute(stmt)
            upserted += 1

        await self.db.commit()

        logger.debug(f"Upserted {upserted} Notion entities")
        return upserted

    async def get_by_notion_id(self, notion_id: str) -> Optional[NotionEntity]:
        result = await self.db.execute(
            select(NotionEntity).where(NotionEntity.notion_id == notion_id)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, entity_id: int) -> Optional[NotionEntity]:
        return await self.db.get(NotionEntity, entity_id)

    async def list_pages(self, parent_notion_id: str, include_archived: bool = False) -> List[NotionEntity]:
        """Cached pages of one container, oldest first"""
        query = select(NotionEntity).where(
            NotionEntity.parent_id == parent_notion_id,
            NotionEntity.type == EntityType.PAGE,
        )
        if not include_archived:
            query = query.where(NotionEntity.archived.is_(False))

        result = await self.db.execute(query.order_by(NotionEntity.created_time, NotionEntity.id))
        return list(result.scalars().all())
