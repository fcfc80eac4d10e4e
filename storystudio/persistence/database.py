"""
SQLite Database Connection and Schema Management.
"""
import sqlite3
import logging
from pathlib import Path
from threading import Lock
from typing import Optional
from contextlib import contextmanager

logger = logging.getLogger(__name__)


class Database:
    """
    Lazily opened SQLite connection shared by the repository.

    ":memory:" is accepted for tests.
    """

    def __init__(self, path: str):
        self.path = path
        self._lock = Lock()
        self._connection: Optional[sqlite3.Connection] = None

    @property
    def connection(self) -> sqlite3.Connection:
        with self._lock:
            if self._connection is None:
                if self.path != ":memory:":
                    Path(self.path).parent.mkdir(parents=True, exist_ok=True)

                conn = sqlite3.connect(
                    self.path,
                    check_same_thread=False,
                    isolation_level=None,
                )
                conn.row_factory = sqlite3.Row

                if self.path != ":memory:":
                    conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA foreign_keys=ON")
                conn.execute("PRAGMA busy_timeout=5000")

                init_schema(conn)
                logger.info(f"SQLite connection established: {self.path}")
                self._connection = conn

            return self._connection

    @contextmanager
    def transaction(self):
        """
        Context manager for database transactions.
        Auto-commits on success, rolls back on exception.
        """
        conn = self.connection

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None


def init_schema(conn: sqlite3.Connection) -> None:
    """
    Initialize database schema.
    Creates tables if they don't exist.
    """
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS stories (
            story_id TEXT PRIMARY KEY,
            config_json TEXT NOT NULL,
            narration_text TEXT,
            full_audio_url TEXT,
            cover_image_url TEXT,
            ending_image_url TEXT,
            video_url TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS scenes (
            story_id TEXT NOT NULL,
            scene_order INTEGER NOT NULL,
            narration_text TEXT NOT NULL,
            visual_description TEXT NOT NULL,
            emotion TEXT NOT NULL,
            duration_seconds INTEGER NOT NULL,
            character_names TEXT NOT NULL DEFAULT '[]',
            image_prompt TEXT,
            generated_prompt TEXT,
            image_url TEXT,
            audio_url TEXT,
            image_status TEXT,
            audio_status TEXT,
            PRIMARY KEY (story_id, scene_order),
            FOREIGN KEY (story_id) REFERENCES stories(story_id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS characters (
            story_id TEXT NOT NULL,
            name TEXT NOT NULL,
            position INTEGER NOT NULL,
            species TEXT,
            main_colors TEXT,
            clothing TEXT,
            accessories TEXT,
            full_description TEXT,
            status TEXT NOT NULL DEFAULT 'supporting',
            reference_image_url TEXT,
            reference_status TEXT,
            PRIMARY KEY (story_id, name),
            FOREIGN KEY (story_id) REFERENCES stories(story_id) ON DELETE CASCADE
        );

        CREATE TABLE IF NOT EXISTS api_usage (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            story_id TEXT,
            service TEXT NOT NULL,
            operation TEXT NOT NULL,
            status TEXT NOT NULL,
            created_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_api_usage_service ON api_usage(service, created_at);
    """)
