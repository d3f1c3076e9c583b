"""
Canvas service configuration — all environment variables in one place.

Read from environment at runtime.
"""

from __future__ import annotations

import os


class Settings:
    """Application settings from environment variables."""

    # Application
    ENVIRONMENT: str = os.environ.get("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Editor
    MAX_HISTORY_SIZE: int = int(os.environ.get("MAX_HISTORY_SIZE", "50"))

    # Persistence (empty = in-memory, lost on restart)
    CANVAS_STORAGE_DIR: str = os.environ.get("CANVAS_STORAGE_DIR", "")

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"


# Singleton instance
settings = Settings()

if settings.MAX_HISTORY_SIZE < 1:
    raise RuntimeError("MAX_HISTORY_SIZE must be at least 1")
