"""
Core utilities and configuration for the Padlock ingestion service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database connection and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import SourceNotActiveError, NetworkError
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
    "get_session",
    "setup_logging",
    # Exceptions
    "IngestionException",
    "ValidationError",
    "NormalizationError",
    "AuthenticationError",
    "ForbiddenError",
    "SourceNotActiveError",
    "ResourceNotFoundError",
    "SourceNotFoundError",
    "JobNotFoundError",
    "ProductNotFoundError",
    "ReviewItemNotFoundError",
    "ConflictError",
    "SourceBusyError",
    "InvalidStatusTransitionError",
    "RateLimitError",
    "ExtractionError",
    "APIExtractionError",
    "NetworkError",
    "UpstreamAuthenticationError",
    "UpstreamNotFoundError",
    "ScrapeError",
    "AIServiceError",
    "LoadError",
    "UpsertError",
    "IngestionFailedError",
    "RetryableError",
    "NonRetryableError",
]
