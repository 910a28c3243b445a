"""
Database connection management.

Provides SQLite connections and write transactions for data persistence.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

# Seconds a writer waits for another writer's lock before failing
BUSY_TIMEOUT_SECONDS = 30.0


def get_connection(db_path: str) -> sqlite3.Connection:
    """Create and return a SQLite database connection.

    Connections run in autocommit mode; multi-statement writes go through
    ``write_transaction`` so that locking is explicit.

    Args:
        db_path: Path to SQLite database file

    Returns:
        SQLite connection with foreign key constraints enabled
    """
    path = Path(db_path)
    conn = sqlite3.connect(
        str(path),
        timeout=BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def write_transaction(db_path: str) -> Iterator[sqlite3.Connection]:
    """Run a read-modify-write sequence under the database write lock.

    ``BEGIN IMMEDIATE`` takes the reserved lock before the first read, so
    two concurrent transactions touching the same row are serialized
    instead of both reading the old value. Commits on success and rolls
    back on any error.

    Args:
        db_path: Path to SQLite database file

    Yields:
        Connection with an open transaction
    """
    conn = get_connection(db_path)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()
