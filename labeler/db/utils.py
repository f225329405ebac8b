"""
SQLite access for the label store

- StoreConnection: one transaction per `with` block, WAL journal, busy
  timeout, and a short backoff when the file is locked by another process
- get_db_connection: function form used by the label repository
- init_database: creates the schema on first use
- check_db_health: summary for /status
"""

import logging
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from labeler.db.schema import SCHEMA_SQL, SCHEMA_VERSION

logger = logging.getLogger(__name__)


def _is_lock_error(error: sqlite3.OperationalError) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


class StoreConnection:
    """
    A label store transaction.

    The block's writes are committed together when it exits cleanly and
    rolled back when it raises. A failed commit propagates to the caller.

    Usage:
        with StoreConnection(db_path) as conn:
            conn.execute("DELETE FROM labels WHERE id = ?", (label_id,))
    """

    def __init__(self, db_path: str, timeout: float = 5.0, attempts: int = 3, backoff: float = 0.1):
        self.db_path = db_path
        self.timeout = timeout
        self.attempts = attempts
        self.backoff = backoff
        self.conn: Optional[sqlite3.Connection] = None

    def _open(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            # readers keep working while a save writes
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute(f"PRAGMA busy_timeout={int(self.timeout * 1000)}")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def __enter__(self) -> sqlite3.Connection:
        for attempt in range(1, self.attempts + 1):
            try:
                self.conn = self._open()
                return self.conn
            except sqlite3.OperationalError as e:
                if not _is_lock_error(e) or attempt == self.attempts:
                    logger.error(f"Cannot open label store {self.db_path} (attempt {attempt}): {e}")
                    raise
                delay = self.backoff * (2 ** (attempt - 1))
                logger.warning(f"Label store locked, retry {attempt}/{self.attempts - 1} in {delay:.2f}s")
                time.sleep(delay)

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.conn is None:
            return False
        try:
            if exc_type is None:
                self.conn.commit()
            else:
                self.conn.rollback()
                logger.warning(f"Label store transaction rolled back: {exc_val}")
        finally:
            self.conn.close()
            self.conn = None
        return False


@contextmanager
def get_db_connection(db_path: str, **kwargs) -> Generator[sqlite3.Connection, None, None]:
    """Open a StoreConnection; kwargs are passed through (timeout, attempts, backoff)."""
    with StoreConnection(db_path, **kwargs) as conn:
        yield conn


def init_database(db_path: str) -> None:
    """
    Create the label store tables if they are missing.

    Safe to call on every start: statements are CREATE ... IF NOT EXISTS.
    """
    db_file = Path(db_path)
    if db_path != ":memory:" and not db_file.exists():
        logger.info(f"Creating new database: {db_path}")
        db_file.parent.mkdir(parents=True, exist_ok=True)

    with get_db_connection(db_path) as conn:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR IGNORE INTO db_metadata (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),)
        )


def check_db_health(db_path: str) -> dict:
    """
    Check database health and configuration

    Returns:
        dict: Health check results ('status' is 'healthy' or 'unhealthy')
    """
    try:
        with get_db_connection(db_path) as conn:
            cursor = conn.cursor()

            cursor.execute("PRAGMA journal_mode")
            journal_mode = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*) FROM labels")
            label_count = cursor.fetchone()[0]

            cursor.execute("SELECT COUNT(*), SUM(enabled = 0) FROM dictionary_tokens")
            token_count, disabled_count = cursor.fetchone()

            cursor.execute("SELECT value FROM db_metadata WHERE key = 'last_save'")
            row = cursor.fetchone()
            last_save = row[0] if row else None

            size_mb = Path(db_path).stat().st_size / (1024 * 1024)

            return {
                'status': 'healthy',
                'db_path': db_path,
                'journal_mode': journal_mode,
                'labels': label_count,
                'tokens': token_count,
                'disabled_tokens': disabled_count or 0,
                'last_save': last_save,
                'size_mb': round(size_mb, 2)
            }

    except (sqlite3.Error, OSError) as e:
        return {
            'status': 'unhealthy',
            'db_path': db_path,
            'error': str(e)
        }
