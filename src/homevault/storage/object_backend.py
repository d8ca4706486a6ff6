# HomeVault - Object Store Backend
#
# Portable backend: the whole store is one JSON document
#
#   {"version": 6,
#    "counters": {"credentials": 3, ...},
#    "stores": {"users": {email: row}, "credentials": {"1": row}, ...}}
#
# held in memory and rewritten atomically on every commit. Writes outside
# transaction() commit immediately.

import copy
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..core.files import read_json, write_json_atomic
from ..crypto.mnemonic import generate_mnemonic_phrase
from ..errors import StorageError
from ..tags import ensure_tags_array, parse_tags_input
from .base import (
    STORE_CREDENTIALS,
    STORE_DOCUMENTS,
    STORE_SEARCH_INDEX,
    STORE_SITES,
    STORE_USERS,
    StorageBackend,
)
from .migrations import Migration, MigrationEngine
from .models import fallback_display_name

logger = logging.getLogger(__name__)


def _empty_state() -> Dict[str, Any]:
    return {"version": 0, "counters": {}, "stores": {}}


# Migration steps operate on a working copy of the state document.

def _create_stores(state: Dict[str, Any]) -> None:
    for store in (STORE_USERS, STORE_CREDENTIALS, STORE_SITES, STORE_DOCUMENTS):
        state["stores"].setdefault(store, {})
        if store != STORE_USERS:
            state["counters"].setdefault(store, 0)


def _backfill_profiles(state: Dict[str, Any]) -> None:
    for email, user in state["stores"][STORE_USERS].items():
        user["display_name"] = fallback_display_name(email, user.get("display_name"))
        if not isinstance(user.get("avatar"), dict):
            user["avatar"] = None
        user["must_change_password"] = bool(user.get("must_change_password"))


def _backfill_mnemonics(state: Dict[str, Any]) -> None:
    for user in state["stores"][STORE_USERS].values():
        mnemonic = user.get("mnemonic")
        if not isinstance(mnemonic, str) or not mnemonic.strip():
            user["mnemonic"] = generate_mnemonic_phrase()


def _normalize_tags(state: Dict[str, Any]) -> None:
    for store in (STORE_CREDENTIALS, STORE_SITES, STORE_DOCUMENTS):
        for record in state["stores"][store].values():
            raw = record.get("tags")
            record["tags"] = parse_tags_input(raw) if isinstance(raw, str) else ensure_tags_array(raw)


def _create_search_index(state: Dict[str, Any]) -> None:
    state["stores"].setdefault(STORE_SEARCH_INDEX, {})
    state["counters"].setdefault(STORE_SEARCH_INDEX, 0)


def _default_recovery_cipher(state: Dict[str, Any]) -> None:
    for user in state["stores"][STORE_USERS].values():
        user.setdefault("recovery_cipher", None)


OBJECT_STORE_MIGRATIONS = [
    Migration(1, "record stores", _create_stores),
    Migration(2, "display name, avatar and flag backfill", _backfill_profiles),
    Migration(3, "recovery mnemonic backfill", _backfill_mnemonics),
    Migration(4, "tags normalized to lists", _normalize_tags),
    Migration(5, "search index store", _create_search_index),
    Migration(6, "recovery key wrap default", _default_recovery_cipher),
]


class ObjectStoreBackend(StorageBackend):
    """JSON document backend with snapshot transactions."""

    name = "object"

    def __init__(self, path: Union[str, Path], migrations: Optional[List[Migration]] = None):
        super().__init__()
        self.path = Path(path)
        self.engine = MigrationEngine(migrations if migrations is not None else OBJECT_STORE_MIGRATIONS)
        self.state: Optional[Dict[str, Any]] = None
        self._snapshot: Optional[Dict[str, Any]] = None

    # Lifecycle

    async def open(self) -> None:
        if self.state is not None:
            return
        try:
            loaded = read_json(self.path, default=None)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read object store {self.path}: {e}") from e

        if loaded is None:
            loaded = _empty_state()
        elif not isinstance(loaded, dict) or not isinstance(loaded.get("stores"), dict):
            raise StorageError(f"Object store {self.path} is not a valid store document")
        loaded.setdefault("version", 0)
        loaded.setdefault("counters", {})
        self.state = loaded

        try:
            self.engine.run(self)
        except StorageError:
            self.state = None
            raise
        logger.info(f"Object store ready at {self.path} (schema v{self.read_version()})")

    async def close(self) -> None:
        self.state = None
        self._snapshot = None

    async def schema_version(self) -> int:
        return self.read_version()

    # MigrationTarget

    def read_version(self) -> int:
        return int(self._state().get("version") or 0)

    @contextmanager
    def unit_of_work(self):
        working = copy.deepcopy(self._state())
        yield working
        self._flush(working)
        self.state = working

    def write_version(self, handle: Dict[str, Any], version: int) -> None:
        handle["version"] = int(version)

    # Transactions

    def _begin(self) -> None:
        if self._snapshot is not None:
            raise StorageError("Nested transactions are not supported")
        self._snapshot = copy.deepcopy(self._state())

    def _commit(self) -> None:
        snapshot, self._snapshot = self._snapshot, None
        try:
            self._flush(self._state())
        except StorageError:
            self.state = snapshot
            raise

    def _rollback(self) -> None:
        if self._snapshot is not None:
            self.state = self._snapshot
        self._snapshot = None

    @contextmanager
    def _write(self):
        """Apply a single write; commits at once unless a transaction is open."""
        if self._snapshot is not None:
            yield self._state()
            return
        self._begin()
        try:
            yield self._state()
        except BaseException:
            self._rollback()
            raise
        self._commit()

    # Row primitives

    def _state(self) -> Dict[str, Any]:
        if self.state is None:
            raise StorageError("Object store is not open")
        return self.state

    def _flush(self, state: Dict[str, Any]) -> None:
        try:
            write_json_atomic(self.path, state)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write object store {self.path}: {e}") from e

    def _store(self, store: str) -> Dict[str, Any]:
        try:
            return self._state()["stores"][store]
        except KeyError as e:
            raise StorageError(f"Object store has no {store!r} store") from e

    def _next_id(self, state: Dict[str, Any], store: str) -> int:
        counters = state["counters"]
        counters[store] = int(counters.get(store) or 0) + 1
        return counters[store]

    def _get_user(self, email: str) -> Optional[Dict[str, Any]]:
        row = self._store(STORE_USERS).get(email)
        return copy.deepcopy(row) if row else None

    def _put_user(self, row: Dict[str, Any]) -> None:
        with self._write():
            self._store(STORE_USERS)[row["email"]] = copy.deepcopy(row)

    def _delete_user(self, email: str) -> None:
        with self._write():
            self._store(STORE_USERS).pop(email, None)

    def _select_owned(self, store: str, owner_email: str) -> List[Dict[str, Any]]:
        return [
            copy.deepcopy(row)
            for row in self._store(store).values()
            if row.get("owner_email") == owner_email
        ]

    def _select_all(self, store: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(row) for row in self._store(store).values()]

    def _get_row(self, store: str, record_id: int) -> Optional[Dict[str, Any]]:
        row = self._store(store).get(str(record_id))
        return copy.deepcopy(row) if row else None

    def _insert_row(self, store: str, row: Dict[str, Any]) -> int:
        with self._write() as state:
            records = self._store(store)
            record_id = self._next_id(state, store)
            records[str(record_id)] = dict(copy.deepcopy(row), id=record_id)
        return record_id

    def _update_row(self, store: str, row: Dict[str, Any]) -> None:
        with self._write():
            records = self._store(store)
            key = str(row["id"])
            existing = records.get(key)
            if existing is None:
                return
            updated = copy.deepcopy(row)
            # owner and creation time are immutable once stored
            updated["owner_email"] = existing.get("owner_email")
            updated["created_at"] = existing.get("created_at")
            records[key] = updated

    def _delete_row(self, store: str, record_id: int) -> None:
        with self._write():
            self._store(store).pop(str(record_id), None)

    def _find_index_key(self, owner_email: str, kind: str, ref_id: str) -> Optional[str]:
        for key, row in self._store(STORE_SEARCH_INDEX).items():
            if (row.get("owner_email"), row.get("kind"), row.get("ref_id")) == (owner_email, kind, ref_id):
                return key
        return None

    def _upsert_index(self, row: Dict[str, Any]) -> int:
        with self._write() as state:
            records = self._store(STORE_SEARCH_INDEX)
            key = self._find_index_key(row["owner_email"], row["kind"], row["ref_id"])
            record_id = int(key) if key is not None else self._next_id(state, STORE_SEARCH_INDEX)
            records[str(record_id)] = dict(copy.deepcopy(row), id=record_id)
        return record_id

    def _delete_index_ref(self, owner_email: str, kind: str, ref_id: str) -> None:
        with self._write():
            key = self._find_index_key(owner_email, kind, ref_id)
            if key is not None:
                self._store(STORE_SEARCH_INDEX).pop(key)

