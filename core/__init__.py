"""
Core utilities and configuration for the Notion → Google Sheets sync service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine, session management and dialect-aware upserts
    redis: Redis client construction for queues and the automation cache
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import NotionAPIError, ConfigurationError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "create_redis",
    "setup_logging",
    # Exceptions
    "SyncException",
    "ExternalAPIError",
    "NotionAPIError",
    "GoogleSheetsAPIError",
    "ConfigurationError",
    "AutomationNotFoundError",
    "MappingNotFoundError",
    "AccountNotFoundError",
    "SpreadsheetNotFoundError",
    "EntityNotFoundError",
    "JobError",
    "UnknownJobTypeError",
    "QueueError",
    "WebhookError",
    "SignatureVerificationError",
    "WebhookPayloadError",
    "ImportStateError",
    "ImportInProgressError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
]
