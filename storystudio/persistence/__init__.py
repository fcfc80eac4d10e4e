"""
Story persistence: SQLite for deployments, in-memory for tests.
"""
import logging

from storystudio.config import AppConfig

from .base import StoryRepository
from .database import Database, init_schema
from .memory_repo import InMemoryStoryRepository
from .story_repo import SQLiteStoryRepository

logger = logging.getLogger(__name__)


def create_story_repository(config: AppConfig) -> StoryRepository:
    """Build the repository selected by STORAGE_BACKEND."""
    if config.storage_backend == "memory":
        logger.info("Using in-memory story storage")
        return InMemoryStoryRepository()
    return SQLiteStoryRepository(Database(config.database_path))


__all__ = [
    "StoryRepository",
    "Database",
    "init_schema",
    "InMemoryStoryRepository",
    "SQLiteStoryRepository",
    "create_story_repository",
]
