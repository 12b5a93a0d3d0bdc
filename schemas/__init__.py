"""
Pydantic schemas for data validation and serialization.

This package defines Pydantic models for request/response validation
and job payloads throughout the sync pipeline:

Schemas:
    mapping: MappingConfig and its column mappings (camelCase aliases)
    webhook: Notion webhook payloads and ingress responses
    jobs: Typed job payloads/results, one tagged union per queue
    automation: AutomationSnapshot stored in the automation cache
    api: API endpoint request/response schemas

Usage:
    from schemas import MappingConfig, WriteRowJobData
    from schemas.api import HealthCheckResponse

Example:
    # Validate a stored mapping
    mapping = MappingConfig.model_validate(row.mapping_config)
    assert mapping.identity_column_index == len(mapping.columns)

    # Parse a raw google-sheets job payload
    payload = google_sheets_adapter.validate_python(job.data)
    assert isinstance(payload, WriteRowJobData)
"""

from schemas.mapping import MappingConfig, ColumnMapping, TransformOptions
from schemas.automation import AutomationSnapshot
from schemas.jobs import (
    SyncJobData,
    ImportJobData,
    FetchPageJobData,
    ListSpreadsheetsJobData,
    WriteHeadersJobData,
    WriteRowJobData,
    DeleteRowJobData,
    MappingSyncJobData,
)

__all__ = [
    "MappingConfig",
    "ColumnMapping",
    "TransformOptions",
    "AutomationSnapshot",
    "SyncJobData",
    "ImportJobData",
    "FetchPageJobData",
    "ListSpreadsheetsJobData",
    "WriteHeadersJobData",
    "WriteRowJobData",
    "DeleteRowJobData",
    "MappingSyncJobData",
]
