"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, model_validator
from typing import Optional, Dict
from datetime import datetime
from models.base import ImportStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class QueueCounts(BaseModel):
    """Job counts of one queue"""
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field("healthy", description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    redis_connected: bool
    queues: Dict[str, QueueCounts] = Field(default_factory=dict)

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif not self.redis_connected:
            # Webhooks still answer but nothing gets enqueued
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "timestamp": "2024-01-15T10:30:00Z",
                "database_connected": True,
                "redis_connected": True,
                "queues": {
                    "google-sheets": {
                        "waiting": 4,
                        "delayed": 0,
                        "active": 2,
                        "completed": 1520,
                        "failed": 3
                    }
                }
            }
        }


# ============================================================================
# Import Schemas
# ============================================================================

class ImportStatusResponse(BaseModel):
    """Polled progress of a bulk import"""
    automation_id: int
    uuid: str
    import_status: ImportStatus
    import_started_at: Optional[datetime] = None
    import_completed_at: Optional[datetime] = None
    import_total_rows: Optional[int] = None
    import_processed_rows: int = 0
    import_fetched_rows: int = 0
    progress_percent: Optional[float] = Field(None, ge=0, le=100)

    @classmethod
    def from_orm(cls, automation):
        total = automation.import_total_rows
        processed = automation.import_processed_rows or 0

        progress = None
        if automation.import_status == ImportStatus.COMPLETED:
            progress = 100.0
        elif total:
            progress = round(min(processed, total) * 100.0 / total, 1)

        return cls(
            automation_id=automation.id,
            uuid=str(automation.uuid),
            import_status=automation.import_status,
            import_started_at=automation.import_started_at,
            import_completed_at=automation.import_completed_at,
            import_total_rows=total,
            import_processed_rows=processed,
            import_fetched_rows=automation.import_fetched_rows or 0,
            progress_percent=progress,
        )

    class Config:
        use_enum_values = True
        json_schema_extra = {
            "example": {
                "automation_id": 12,
                "uuid": "550e8400-e29b-41d4-a716-446655440000",
                "import_status": "importing",
                "import_started_at": "2024-01-15T10:00:00Z",
                "import_completed_at": None,
                "import_total_rows": 40,
                "import_processed_rows": 25,
                "import_fetched_rows": 40,
                "progress_percent": 62.5
            }
        }


class ImportStartResponse(BaseModel):
    """Returned when a bulk import is accepted"""
    automation_id: int
    import_status: ImportStatus
    import_started_at: datetime
    job_id: Optional[str] = None

    class Config:
        use_enum_values = True


# ============================================================================
# Error Response Schema
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response"""
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Import already in progress",
                "detail": "Automation 12 is already importing",
                "timestamp": "2024-01-15T10:30:00Z"
            }
        }
