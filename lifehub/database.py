import contextlib
import logging
import sqlite3
from pathlib import Path

from .domain import StorageError

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS accounts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    username TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS widgets (
    id TEXT PRIMARY KEY,
    owner_id INTEGER REFERENCES accounts (id),
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    cols INTEGER NOT NULL DEFAULT 1,
    position INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    content TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_widgets_owner_position ON widgets (owner_id, position);
CREATE INDEX IF NOT EXISTS idx_widgets_type ON widgets (type);

CREATE TABLE IF NOT EXISTS push_subscriptions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    endpoint TEXT NOT NULL UNIQUE,
    p256dh TEXT NOT NULL,
    auth TEXT NOT NULL,
    owner_id INTEGER REFERENCES accounts (id),
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_push_subscriptions_owner ON push_subscriptions (owner_id);
"""


class Database:
    """
    SQLite database shared by the account, widget and subscription stores.

    Every operation opens its own short-lived connection and commits a single
    statement, so request threads never share a connection.
    """

    def __init__(self, db_path):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @contextlib.contextmanager
    def connect(self):
        """
        Yield a connection configured for concurrent access.

        - WAL mode: readers don't block the single writer
        - foreign keys: owner ids must reference an existing account
        - busy timeout: wait for a competing writer instead of failing at once
        """
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            logger.error("Cannot open database %s: %s", self.db_path, e)
            raise StorageError("Database unavailable") from e
        try:
            conn.row_factory = sqlite3.Row
            try:
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA foreign_keys=ON;")
                conn.execute("PRAGMA busy_timeout=5000;")
            except sqlite3.Error as e:
                logger.error("Cannot configure database %s: %s", self.db_path, e)
                raise StorageError("Database unavailable") from e
            yield conn
        finally:
            conn.close()

    def init_schema(self):
        """Create tables and indexes if they don't exist."""
        with self.connect() as conn:
            try:
                conn.executescript(SCHEMA_SQL)
                conn.commit()
            except sqlite3.Error as e:
                conn.rollback()
                raise StorageError(f"Failed to create schema: {e}") from e
        logger.info("Database ready at %s", self.db_path)

    def ping(self) -> bool:
        """Return True when the database answers a trivial query."""
        try:
            with self.connect() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except (StorageError, sqlite3.Error):
            return False
