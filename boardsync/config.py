"""Application configuration"""

import logging
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Settings loaded from BOARDSYNC_* environment variables"""

    # Application
    app_name: str = "Board Sync API"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 8000

    # Store
    database_path: Optional[str] = Field(
        default=None,
        description="TinyDB JSON file; empty keeps the store in memory"
    )
    max_batch_writes: int = Field(
        default=500,
        description="Maximum number of document mutations in one atomic batch"
    )

    # Board defaults
    default_columns: List[str] = ["To Do", "In Progress", "Review", "Done"]
    default_board_color: str = "#2E78D2"
    default_label_color: str = "#E8DCC5"
    copy_suffix: str = " (Copy)"

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "BOARDSYNC_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


def validate_settings(settings: Settings) -> list:
    """Return a list of configuration problems (empty when usable)"""
    errors = []

    if settings.max_batch_writes <= 0:
        errors.append("MAX_BATCH_WRITES must be a positive integer")

    if not settings.default_columns:
        errors.append("DEFAULT_COLUMNS must name at least one column")

    return errors


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    base_settings = Settings()
    for error in validate_settings(base_settings):
        logger.warning(f"Config warning: {error}")
    return base_settings


# Convenience access
settings = get_settings()
