"""
Settings for Knit.

Settings are read from ``KNIT_*`` environment variables once per process.
A KnitContext can also be constructed with an explicit KnitSettings
instance, which is what tests do.
"""

from __future__ import annotations

import os
from functools import lru_cache

from pydantic import BaseModel, Field


class KnitSettings(BaseModel):
    """
    Runtime settings.

    Attributes:
        http_timeout: Timeout in seconds for resource and remote store requests
        remote_max_retries: Retries for retryable remote store failures
            (0 keeps the single-attempt behavior)
        retry_delay: Base delay for exponential backoff between retries
        indexed_db_path: SQLite database backing the local indexed tier
        dependency_timeout: Seconds to wait for a single dependency before
            raising StalledDependencyError (None waits forever)
        log_requests: Log outgoing remote store payloads at debug level
    """

    http_timeout: float = Field(30.0, gt=0)
    remote_max_retries: int = Field(0, ge=0)
    retry_delay: float = Field(1.0, ge=0)
    indexed_db_path: str = Field(":memory:", description="SQLite path for the indexed tier")
    dependency_timeout: float | None = Field(None, gt=0)
    log_requests: bool = False


@lru_cache()
def get_settings() -> KnitSettings:
    """
    Get settings from environment.

    Uses lru_cache for singleton pattern.
    """
    timeout = os.getenv("KNIT_DEPENDENCY_TIMEOUT")
    return KnitSettings(
        http_timeout=float(os.getenv("KNIT_HTTP_TIMEOUT", "30.0")),
        remote_max_retries=int(os.getenv("KNIT_REMOTE_MAX_RETRIES", "0")),
        retry_delay=float(os.getenv("KNIT_RETRY_DELAY", "1.0")),
        indexed_db_path=os.getenv("KNIT_INDEXED_DB_PATH", ":memory:"),
        dependency_timeout=float(timeout) if timeout else None,
        log_requests=os.getenv("KNIT_LOG_REQUESTS", "false").lower() == "true",
    )
