from sqlalchemy import Column, Integer, String, Enum, DateTime, Boolean, ForeignKey, Index
from datetime import datetime
from models.base import Base, JSONType, EntityType


class NotionEntity(Base):
    """
    Durable snapshot of a fetched Notion page or database.

    Purpose:
    - Source of truth for write-row jobs (they never call Notion themselves)
    - Parent linkage used by webhook resolution (page → database → automation)

    Design Decisions:
    - Upserted by notion_id; identity columns are never overwritten
    - properties_json keeps the full raw API payload
    """
    __tablename__ = "notion_entities"

    id = Column(Integer, primary_key=True, autoincrement=True)

    notion_id = Column(String(64), nullable=False, unique=True, index=True)
    parent_id = Column(String(64), nullable=True, index=True)  # None for root entities
    type = Column(Enum(EntityType), nullable=False)

    account_id = Column(Integer, ForeignKey("notion_accounts.id"), nullable=True, index=True)
    workspace_id = Column(String(100), nullable=True)

    archived = Column(Boolean, default=False, nullable=False)
    title_plain = Column(String(2000), nullable=True)
    created_time = Column(DateTime, nullable=True)
    last_edited_time = Column(DateTime, nullable=True, index=True)

    properties_json = Column(JSONType, nullable=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("idx_entity_parent_type", "parent_id", "type"),
    )
