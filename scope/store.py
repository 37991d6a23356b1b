"""
Tag database using SQLite.

The store owns the single connection to the database file and its
schema. It is the only place that opens the file; the tag repository
borrows the connection through transaction() and reading().

Schema:
- folders: tracked directories, unique by absolute path
- tags: labels, unique by (case-sensitive) name
- folder_tags: the association, cascading on both sides
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from .config import get_db_path
from .errors import IOFailure, StoreNotInitialized

logger = logging.getLogger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS folders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT UNIQUE NOT NULL,
        created_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS tags (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT UNIQUE NOT NULL,
        created_at INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS folder_tags (
        folder_id INTEGER NOT NULL,
        tag_id INTEGER NOT NULL,
        created_at INTEGER NOT NULL,
        PRIMARY KEY (folder_id, tag_id),
        FOREIGN KEY (folder_id) REFERENCES folders(id) ON DELETE CASCADE,
        FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
    );

    CREATE INDEX IF NOT EXISTS idx_folder_tags_tag ON folder_tags(tag_id);
    CREATE INDEX IF NOT EXISTS idx_folder_tags_folder ON folder_tags(folder_id);
"""


class Store:
    """
    SQLite-backed store for folders, tags and their associations.

    Construct once per process and pass it to the repository. init()
    may be called any number of times, from any thread: the first call
    opens the database, later calls return the same connection.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Args:
            db_path: Path to SQLite database file (default: scope.db
                in the per-user config directory, resolved at init time)
        """
        self._db_path = Path(db_path) if db_path is not None else None
        self._conn: Optional[sqlite3.Connection] = None
        self._init_lock = threading.Lock()

    @property
    def path(self) -> Path:
        if self._db_path is None:
            return get_db_path()
        return self._db_path

    @property
    def initialized(self) -> bool:
        return self._conn is not None

    def init(self) -> sqlite3.Connection:
        """Open the database and create the schema. Idempotent."""
        with self._init_lock:
            if self._conn is not None:
                return self._conn
            if self._db_path is None:
                self._db_path = get_db_path()
            try:
                self._db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise IOFailure(f"failed to create config directory: {e}") from e
            try:
                conn = self._open()
            except sqlite3.Error as e:
                raise IOFailure(f"failed to open database {self._db_path}: {e}") from e
            self._conn = conn
            logger.debug("Opened tag database %s", self._db_path)
            return conn

    def _open(self) -> sqlite3.Connection:
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for multi-statement writes
        conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        try:
            conn.row_factory = sqlite3.Row
            # Cascades are off unless asked for, per connection
            conn.execute("PRAGMA foreign_keys=ON")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA busy_timeout=5000")
            conn.executescript(SCHEMA)
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def handle(self) -> sqlite3.Connection:
        """Return the open connection, or raise StoreNotInitialized."""
        conn = self._conn
        if conn is None:
            raise StoreNotInitialized()
        return conn

    @contextmanager
    def transaction(self, action: str) -> Iterator[sqlite3.Connection]:
        """
        Run a block of statements as one write transaction.

        BEGIN IMMEDIATE takes the write lock up front so the reads
        inside the block see the state the writes are based on. Any
        exception rolls back; SQLite errors surface as IOFailure.
        """
        conn = self.handle()
        try:
            conn.execute("BEGIN IMMEDIATE")
        except sqlite3.Error as e:
            raise IOFailure(f"failed to {action}: {e}") from e
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise IOFailure(f"failed to {action}: {e}") from e
        except BaseException:
            conn.rollback()
            raise

    @contextmanager
    def reading(self, action: str) -> Iterator[sqlite3.Connection]:
        """Read-only access to the connection, translating SQLite errors."""
        conn = self.handle()
        try:
            yield conn
        except sqlite3.Error as e:
            raise IOFailure(f"failed to {action}: {e}") from e

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection. Safe if never initialized."""
        with self._init_lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
