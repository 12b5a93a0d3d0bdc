"""
Pydantic schemas for Notion webhook payloads and ingress responses
"""

from pydantic import BaseModel
from typing import Optional, List, Literal, Union
from enum import Enum


class WebhookEventType(str, Enum):
    PAGE_CREATED = "page.created"
    PAGE_CONTENT_UPDATED = "page.content_updated"
    PAGE_PROPERTIES_UPDATED = "page.properties_updated"
    PAGE_DELETED = "page.deleted"
    PAGE_RESTORED = "page.restored"
    PAGE_MOVED = "page.moved"
    PAGE_LOCKED = "page.locked"
    PAGE_UNLOCKED = "page.unlocked"
    DATABASE_CREATED = "database.created"
    DATABASE_CONTENT_UPDATED = "database.content_updated"
    DATABASE_SCHEMA_UPDATED = "database.schema_updated"
    DATABASE_DELETED = "database.deleted"
    DATABASE_RESTORED = "database.restored"
    DATA_SOURCE_SCHEMA_UPDATED = "data_source.schema_updated"
    COMMENT_CREATED = "comment.created"
    COMMENT_UPDATED = "comment.updated"
    COMMENT_DELETED = "comment.deleted"


# Events that (re)fetch the page and write it to the sheet
FETCH_EVENT_TYPES = {
    WebhookEventType.PAGE_CREATED,
    WebhookEventType.PAGE_CONTENT_UPDATED,
    WebhookEventType.PAGE_PROPERTIES_UPDATED,
    WebhookEventType.PAGE_RESTORED,
}

SCHEMA_EVENT_TYPES = {
    WebhookEventType.DATABASE_SCHEMA_UPDATED,
    WebhookEventType.DATA_SOURCE_SCHEMA_UPDATED,
}


class WebhookUser(BaseModel):
    id: str
    type: Literal["person", "bot"]


class WebhookParent(BaseModel):
    id: str
    type: Literal["database", "page", "workspace", "block"]
    data_source_id: Optional[str] = None


class WebhookEventData(BaseModel):
    parent: Optional[WebhookParent] = None

    class Config:
        extra = "allow"


class WebhookEntity(BaseModel):
    id: str
    type: Literal["page", "database", "comment"]


class NotionWebhookEvent(BaseModel):
    """Event delivery from a Notion webhook subscription"""
    id: str
    type: WebhookEventType
    entity: WebhookEntity
    workspace_id: str
    workspace_name: Optional[str] = None
    timestamp: str
    integration_id: Optional[str] = None
    subscription_id: Optional[str] = None
    authors: Optional[List[WebhookUser]] = None
    accessible_by: Optional[List[WebhookUser]] = None
    attempt_number: Optional[int] = None
    api_version: Optional[str] = None
    data: Optional[WebhookEventData] = None

    @property
    def parent_id(self) -> Optional[str]:
        if self.data and self.data.parent:
            return self.data.parent.id
        return None


class NotionWebhookVerification(BaseModel):
    """Handshake sent once when the subscription is created"""
    verification_token: str


NotionWebhookPayload = Union[NotionWebhookEvent, NotionWebhookVerification]


class WebhookResponse(BaseModel):
    """
    Body returned to Notion for every delivery.

    status is one of: ok (handshake), queued, skipped, error.
    """
    status: str
    reason: Optional[str] = None
    message: Optional[str] = None
    automation_id: Optional[int] = None
    job_id: Optional[str] = None
    queue: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "status": "queued",
                "automation_id": 12,
                "job_id": "notion-page-fetch-12-5c6a8f0e-2024-01-15T10:00:00.000Z",
                "queue": "notion-page-fetch"
            }
        }
