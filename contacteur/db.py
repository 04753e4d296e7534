"""SQLite connection management and schema bootstrap.

- one place to open the connection
- foreign keys on
- sqlite3.Row rows
- explicit transactions (the connection itself runs in autocommit mode)
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


@dataclass
class SQLiteDatabase:
    """Owns a single sqlite3 connection."""

    db_path: Union[Path, str]
    _conn: Optional[sqlite3.Connection] = None

    def connect(self) -> sqlite3.Connection:
        """Opens the connection on first use and returns it."""
        if self._conn is None:
            if str(self.db_path) != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            # foreign keys are off by default in SQLite
            self._conn.execute("PRAGMA foreign_keys = ON;")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def execute_script(self, sql: str) -> None:
        """Runs several statements at once (schema)."""
        conn = self.connect()
        conn.executescript(sql)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        BEGIN IMMEDIATE ... COMMIT, rolled back on any exception.
        The write lock is taken up front so readers never observe a half
        rewritten course.
        """
        conn = self.connect()
        conn.execute("BEGIN IMMEDIATE;")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
        conn.execute("COMMIT;")


def init_db(db_path: Union[Path, str]) -> SQLiteDatabase:
    """Applies schema.sql (idempotent) and returns the open database."""
    db = SQLiteDatabase(db_path)
    db.execute_script(SCHEMA_PATH.read_text(encoding="utf-8"))
    logger.debug("schema applied to %s", db_path)
    return db
