"""
Core utilities and configuration for the FDC ingestion pipeline.

Modules:
    config: Settings and credential-tier throughput knobs
    database: Async engine and session factory for the ingredient store
    exceptions: Exception hierarchy shared by fetcher, loader and runner
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import ThrottledError, FatalAuthError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "get_settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "ThrottledError",
    "TransientNetworkError",
    "FatalAuthError",
    "TransformationError",
    "TransformError",
    "LoadError",
    "UpsertError",
    "CheckpointError",
    "RetryableError",
    "NonRetryableError",
]
