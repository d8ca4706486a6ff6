# HomeVault - Central SQLite Connection Helper
#
# Every SQLite connection in the project is opened through `connect()` so
# that the PRAGMAs are consistent:
#
#   - WAL journal mode
#   - busy_timeout to avoid SQLITE_BUSY if another process peeks at the file
#   - foreign_keys enforcement on every connection
#
# Connections are opened in autocommit mode (isolation_level=None); callers
# manage transactions explicitly with BEGIN / COMMIT / ROLLBACK so that a
# migration step and its version bump land together.

import sqlite3
from pathlib import Path
from typing import Union


def connect(
    db_path: Union[str, Path],
    *,
    row_factory: bool = False,
    check_same_thread: bool = True,
) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and safe PRAGMAs.

    Args:
        db_path: Path to the database file.
        row_factory: If True, set conn.row_factory = sqlite3.Row.
        check_same_thread: Passed to sqlite3.connect().

    Returns:
        sqlite3.Connection with WAL mode, busy_timeout, and foreign_keys.
    """
    conn = sqlite3.connect(
        str(db_path),
        check_same_thread=check_same_thread,
        isolation_level=None,
    )
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")
    conn.execute("PRAGMA foreign_keys=ON")
    if row_factory:
        conn.row_factory = sqlite3.Row
    return conn
