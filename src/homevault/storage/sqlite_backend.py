# HomeVault - SQLite Storage Backend
#
# Embedded relational backend for the desktop runtime. The schema version is
# kept in PRAGMA user_version. The connection runs in autocommit mode;
# migrations and transaction() wrap their statements in explicit
# BEGIN IMMEDIATE / COMMIT.

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.db import connect
from ..crypto.mnemonic import generate_mnemonic_phrase
from ..errors import StorageError
from ..tags import normalize_tags, parse_tags_input
from .base import (
    STORE_CREDENTIALS,
    STORE_DOCUMENTS,
    STORE_SEARCH_INDEX,
    STORE_SITES,
    StorageBackend,
)
from .migrations import Migration, MigrationEngine
from .models import fallback_display_name

logger = logging.getLogger(__name__)

TABLES = {
    STORE_CREDENTIALS: "passwords",
    STORE_SITES: "sites",
    STORE_DOCUMENTS: "docs",
    STORE_SEARCH_INDEX: "search_index",
}

COLUMNS = {
    STORE_CREDENTIALS: ["owner_email", "title", "username", "password_cipher", "url",
                        "tags", "created_at", "updated_at"],
    STORE_SITES: ["owner_email", "title", "url", "description", "tags",
                  "created_at", "updated_at"],
    STORE_DOCUMENTS: ["owner_email", "title", "description", "document", "tags",
                      "created_at", "updated_at"],
    STORE_SEARCH_INDEX: ["owner_email", "kind", "ref_id", "title", "subtitle",
                         "keywords", "updated_at"],
}

USER_COLUMNS = ["email", "salt", "key_hash", "display_name", "avatar", "mnemonic",
                "recovery_cipher", "must_change_password", "created_at", "updated_at"]

# Columns stored as JSON text
JSON_COLUMNS = {"tags", "document", "keywords", "avatar"}


def _encode(column: str, value: Any) -> Any:
    if column in JSON_COLUMNS:
        return None if value is None else json.dumps(value)
    if column == "must_change_password":
        return 1 if value else 0
    return value


def _decode(row: sqlite3.Row) -> Dict[str, Any]:
    data = dict(row)
    for column in JSON_COLUMNS & data.keys():
        raw = data[column]
        if raw is None:
            continue
        try:
            data[column] = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring unparsable {column} value in SQLite row")
            data[column] = None
    if "must_change_password" in data:
        data["must_change_password"] = bool(data["must_change_password"])
    return data


def _column_names(conn: sqlite3.Connection, table: str) -> set:
    return {row[1] for row in conn.execute(f"PRAGMA table_info({table})")}


def _add_column(conn: sqlite3.Connection, table: str, column: str, ddl: str) -> None:
    if column not in _column_names(conn, table):
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}")


# Migration steps. Every step is safe to run against a store that already
# has its changes.

def _create_base_tables(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS users (
            email TEXT PRIMARY KEY,
            salt TEXT NOT NULL,
            key_hash TEXT NOT NULL,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS passwords (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_email TEXT NOT NULL,
            title TEXT NOT NULL,
            username TEXT NOT NULL,
            password_cipher TEXT NOT NULL,
            url TEXT,
            tags TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS sites (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_email TEXT NOT NULL,
            title TEXT NOT NULL,
            url TEXT NOT NULL,
            description TEXT,
            tags TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS docs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_email TEXT NOT NULL,
            title TEXT NOT NULL,
            description TEXT,
            tags TEXT,
            created_at INTEGER NOT NULL,
            updated_at INTEGER NOT NULL
        )
    """)


def _create_owner_indices(conn: sqlite3.Connection) -> None:
    for table in ("passwords", "sites", "docs"):
        conn.execute(f"CREATE INDEX IF NOT EXISTS idx_{table}_owner_email ON {table}(owner_email)")
        conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_{table}_owner_email_updated_at "
            f"ON {table}(owner_email, updated_at)"
        )


def _add_document_column(conn: sqlite3.Connection) -> None:
    _add_column(conn, "docs", "document", "TEXT")


def _add_profile_columns(conn: sqlite3.Connection) -> None:
    _add_column(conn, "users", "display_name", "TEXT")
    _add_column(conn, "users", "avatar", "TEXT")
    _add_column(conn, "users", "must_change_password", "INTEGER NOT NULL DEFAULT 0")

    rows = conn.execute("SELECT email, display_name FROM users").fetchall()
    for email, display_name in rows:
        fallback = fallback_display_name(email, display_name)
        if fallback != display_name:
            conn.execute("UPDATE users SET display_name = ? WHERE email = ?", (fallback, email))


def _add_mnemonic_column(conn: sqlite3.Connection) -> None:
    _add_column(conn, "users", "mnemonic", "TEXT")

    rows = conn.execute(
        "SELECT email FROM users WHERE mnemonic IS NULL OR TRIM(mnemonic) = ''"
    ).fetchall()
    for (email,) in rows:
        conn.execute(
            "UPDATE users SET mnemonic = ? WHERE email = ?",
            (generate_mnemonic_phrase(), email),
        )


def _normalize_stored_tags(conn: sqlite3.Connection) -> None:
    for table in ("passwords", "sites", "docs"):
        _add_column(conn, table, "tags", "TEXT")
        for record_id, raw in conn.execute(f"SELECT id, tags FROM {table}").fetchall():
            tags = _parse_legacy_tags(raw)
            encoded = json.dumps(tags)
            if encoded != raw:
                conn.execute(f"UPDATE {table} SET tags = ? WHERE id = ?", (encoded, record_id))


def _parse_legacy_tags(raw: Optional[str]) -> List[str]:
    if raw is None or not raw.strip():
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return parse_tags_input(raw)
    if isinstance(value, list):
        return normalize_tags(value)
    if isinstance(value, str):
        return parse_tags_input(value)
    return []


def _create_search_index(conn: sqlite3.Connection) -> None:
    conn.execute("""
        CREATE TABLE IF NOT EXISTS search_index (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            owner_email TEXT NOT NULL,
            kind TEXT NOT NULL,
            ref_id TEXT NOT NULL,
            title TEXT NOT NULL,
            subtitle TEXT,
            keywords TEXT NOT NULL DEFAULT '[]',
            updated_at INTEGER NOT NULL
        )
    """)
    conn.execute("CREATE INDEX IF NOT EXISTS idx_search_index_owner ON search_index(owner_email)")
    conn.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_search_index_owner_kind_ref "
        "ON search_index(owner_email, kind, ref_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_search_index_owner_updated "
        "ON search_index(owner_email, updated_at DESC)"
    )


def _add_recovery_cipher_column(conn: sqlite3.Connection) -> None:
    _add_column(conn, "users", "recovery_cipher", "TEXT")


SQLITE_MIGRATIONS = [
    Migration(1, "base tables", _create_base_tables),
    Migration(2, "owner and updated_at indices", _create_owner_indices),
    Migration(3, "document payload column", _add_document_column),
    Migration(4, "profile columns and display name backfill", _add_profile_columns),
    Migration(5, "recovery mnemonic column and backfill", _add_mnemonic_column),
    Migration(6, "tags normalized to JSON lists", _normalize_stored_tags),
    Migration(7, "search index table", _create_search_index),
    Migration(8, "recovery key wrap column", _add_recovery_cipher_column),
]


class SqliteBackend(StorageBackend):
    """
    SQLite storage backend.

    Usage:
        backend = SqliteBackend(settings.database_path)
        await backend.open()
        entries = await backend.credentials.where("owner_email").equals(email).to_array()
    """

    name = "sqlite"

    def __init__(self, db_path: Union[str, Path], migrations: Optional[List[Migration]] = None):
        super().__init__()
        self.db_path = Path(db_path)
        self.engine = MigrationEngine(migrations if migrations is not None else SQLITE_MIGRATIONS)
        self.conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False

    # Lifecycle

    async def open(self) -> None:
        if self.conn is not None:
            return
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = connect(self.db_path, row_factory=True, check_same_thread=False)
            self.conn.isolation_level = None
        except (OSError, sqlite3.Error) as e:
            self.conn = None
            raise StorageError(f"Failed to open SQLite store {self.db_path}: {e}") from e

        try:
            self.engine.run(self)
        except StorageError:
            await self.close()
            raise
        logger.info(f"SQLite store ready at {self.db_path} (schema v{self.read_version()})")

    async def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    async def schema_version(self) -> int:
        return self.read_version()

    # MigrationTarget

    def read_version(self) -> int:
        row = self._connection().execute("PRAGMA user_version").fetchone()
        return int(row[0]) if row else 0

    @contextmanager
    def unit_of_work(self):
        conn = self._connection()
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        else:
            conn.execute("COMMIT")

    def write_version(self, handle: sqlite3.Connection, version: int) -> None:
        handle.execute(f"PRAGMA user_version = {int(version)}")

    # Transactions

    def _begin(self) -> None:
        if self._in_transaction:
            raise StorageError("Nested transactions are not supported")
        self._execute("BEGIN IMMEDIATE")
        self._in_transaction = True

    def _commit(self) -> None:
        self._in_transaction = False
        self._execute("COMMIT")

    def _rollback(self) -> None:
        self._in_transaction = False
        try:
            self._connection().execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.error(f"SQLite rollback failed: {e}")

    # Row primitives

    def _connection(self) -> sqlite3.Connection:
        if self.conn is None:
            raise StorageError("SQLite store is not open")
        return self.conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._connection().execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"SQLite statement failed: {e}") from e

    def _get_user(self, email: str) -> Optional[Dict[str, Any]]:
        row = self._execute("SELECT * FROM users WHERE email = ?", (email,)).fetchone()
        return _decode(row) if row else None

    def _put_user(self, row: Dict[str, Any]) -> None:
        placeholders = ", ".join("?" for _ in USER_COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in USER_COLUMNS if c != "email")
        self._execute(
            f"INSERT INTO users ({', '.join(USER_COLUMNS)}) VALUES ({placeholders}) "
            f"ON CONFLICT(email) DO UPDATE SET {updates}",
            tuple(_encode(c, row.get(c)) for c in USER_COLUMNS),
        )

    def _delete_user(self, email: str) -> None:
        self._execute("DELETE FROM users WHERE email = ?", (email,))

    def _select_owned(self, store: str, owner_email: str) -> List[Dict[str, Any]]:
        rows = self._execute(
            f"SELECT * FROM {TABLES[store]} WHERE owner_email = ? "
            f"ORDER BY updated_at DESC, id DESC",
            (owner_email,),
        ).fetchall()
        return [_decode(row) for row in rows]

    def _select_all(self, store: str) -> List[Dict[str, Any]]:
        rows = self._execute(f"SELECT * FROM {TABLES[store]} ORDER BY id").fetchall()
        return [_decode(row) for row in rows]

    def _get_row(self, store: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._execute(
            f"SELECT * FROM {TABLES[store]} WHERE id = ?", (record_id,)
        ).fetchone()
        return _decode(row) if row else None

    def _insert_row(self, store: str, row: Dict[str, Any]) -> int:
        columns = COLUMNS[store]
        cursor = self._execute(
            f"INSERT INTO {TABLES[store]} ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)})",
            tuple(_encode(c, row.get(c)) for c in columns),
        )
        return int(cursor.lastrowid)

    def _update_row(self, store: str, row: Dict[str, Any]) -> None:
        columns = [c for c in COLUMNS[store] if c not in ("owner_email", "created_at")]
        assignments = ", ".join(f"{c} = ?" for c in columns)
        self._execute(
            f"UPDATE {TABLES[store]} SET {assignments} WHERE id = ?",
            tuple(_encode(c, row.get(c)) for c in columns) + (row["id"],),
        )

    def _delete_row(self, store: str, record_id: int) -> None:
        self._execute(f"DELETE FROM {TABLES[store]} WHERE id = ?", (record_id,))

    def _upsert_index(self, row: Dict[str, Any]) -> int:
        columns = COLUMNS[STORE_SEARCH_INDEX]
        updates = ", ".join(
            f"{c} = excluded.{c}" for c in ("title", "subtitle", "keywords", "updated_at")
        )
        self._execute(
            f"INSERT INTO search_index ({', '.join(columns)}) "
            f"VALUES ({', '.join('?' for _ in columns)}) "
            f"ON CONFLICT(owner_email, kind, ref_id) DO UPDATE SET {updates}",
            tuple(_encode(c, row.get(c)) for c in columns),
        )
        found = self._execute(
            "SELECT id FROM search_index WHERE owner_email = ? AND kind = ? AND ref_id = ?",
            (row["owner_email"], row["kind"], row["ref_id"]),
        ).fetchone()
        return int(found[0])

    def _delete_index_ref(self, owner_email: str, kind: str, ref_id: str) -> None:
        self._execute(
            "DELETE FROM search_index WHERE owner_email = ? AND kind = ? AND ref_id = ?",
            (owner_email, kind, ref_id),
        )
