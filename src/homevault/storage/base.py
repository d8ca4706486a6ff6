# HomeVault - Storage Backend Interface
#
# One interface, two interchangeable backends (SQLite, JSON object store).
# Backends implement a handful of row-level primitives over plain dicts;
# the collection classes here turn them into the owner-scoped, model-typed
# API the rest of the engine uses:
#
#   backend.users.get(email)
#   backend.credentials.where("owner_email").equals(email).to_array()
#   backend.search_index.put(record)
#
# Rows are returned ordered by updated_at desc, then id desc.

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Type

from ..errors import ValidationError
from .models import (
    Account,
    CredentialEntry,
    DocumentRecord,
    SearchIndexRecord,
    SiteRecord,
)

logger = logging.getLogger(__name__)

STORE_USERS = "users"
STORE_CREDENTIALS = "credentials"
STORE_SITES = "sites"
STORE_DOCUMENTS = "documents"
STORE_SEARCH_INDEX = "search_index"

OWNED_STORES = (STORE_CREDENTIALS, STORE_SITES, STORE_DOCUMENTS, STORE_SEARCH_INDEX)

OWNER_FIELD = "owner_email"


def sort_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Newest first: updated_at desc, id desc."""
    return sorted(
        rows,
        key=lambda row: (int(row.get("updated_at") or 0), int(row.get("id") or 0)),
        reverse=True,
    )


class OwnerQuery:
    """Result of ``collection.where("owner_email")``."""

    def __init__(self, collection: "OwnedCollection"):
        self._collection = collection
        self._owner: Optional[str] = None

    def equals(self, owner_email: str) -> "OwnerQuery":
        self._owner = owner_email
        return self

    async def to_array(self) -> list:
        if self._owner is None:
            raise ValidationError("Owner query needs equals(owner_email) before to_array()")
        rows = self._collection.backend._select_owned(self._collection.store, self._owner)
        return [self._collection.model.from_dict(row) for row in sort_rows(rows)]


class UsersTable:
    """Account rows keyed by email."""

    def __init__(self, backend: "StorageBackend"):
        self.backend = backend

    async def get(self, email: str) -> Optional[Account]:
        row = self.backend._get_user(email)
        return Account.from_dict(row) if row else None

    async def put(self, account: Account) -> str:
        self.backend._put_user(account.to_dict())
        return account.email

    async def delete(self, email: str) -> None:
        self.backend._delete_user(email)


class OwnedCollection:
    """An owner-scoped record collection (credentials, sites, documents)."""

    def __init__(self, backend: "StorageBackend", store: str, model: Type):
        self.backend = backend
        self.store = store
        self.model = model

    def where(self, field_name: str) -> OwnerQuery:
        if field_name != OWNER_FIELD:
            raise ValidationError(f"Unsupported filter field for {self.store}: {field_name!r}")
        return OwnerQuery(self)

    async def get(self, record_id: int):
        row = self.backend._get_row(self.store, record_id)
        return self.model.from_dict(row) if row else None

    async def add(self, record) -> int:
        data = record.to_dict()
        data.pop("id", None)
        record_id = self.backend._insert_row(self.store, data)
        record.id = record_id
        return record_id

    async def put(self, record) -> int:
        """Update by id; records without an id are added."""
        if record.id is None:
            return await self.add(record)
        self.backend._update_row(self.store, record.to_dict())
        return record.id

    async def delete(self, record_id: int) -> None:
        self.backend._delete_row(self.store, record_id)


class DocumentCollection(OwnedCollection):
    """Documents, plus the cross-owner lookup attachment cleanup needs."""

    def __init__(self, backend: "StorageBackend"):
        super().__init__(backend, STORE_DOCUMENTS, DocumentRecord)

    async def file_in_use(self, rel_path: str) -> bool:
        """Whether any document of any account still points at the blob."""
        for row in self.backend._select_all(self.store):
            if self.model.from_dict(row).file_path == rel_path:
                return True
        return False


class SearchIndexCollection(OwnedCollection):
    """Search entries, unique per (owner_email, kind, ref_id)."""

    def __init__(self, backend: "StorageBackend"):
        super().__init__(backend, STORE_SEARCH_INDEX, SearchIndexRecord)

    async def put(self, record: SearchIndexRecord) -> int:
        data = record.to_dict()
        data.pop("id", None)
        record.id = self.backend._upsert_index(data)
        return record.id

    async def add(self, record: SearchIndexRecord) -> int:
        return await self.put(record)

    async def delete_ref(self, owner_email: str, kind: str, ref_id: str) -> None:
        self.backend._delete_index_ref(owner_email, kind, str(ref_id))


class StorageBackend(ABC):
    """
    Abstract storage backend.

    Subclasses provide connection handling, migrations and the row
    primitives below. Every primitive raises StorageError (chained) on an
    underlying I/O failure; nothing is retried.
    """

    name = "abstract"

    def __init__(self):
        self.users = UsersTable(self)
        self.credentials = OwnedCollection(self, STORE_CREDENTIALS, CredentialEntry)
        self.sites = OwnedCollection(self, STORE_SITES, SiteRecord)
        self.documents = DocumentCollection(self)
        self.search_index = SearchIndexCollection(self)

    # Lifecycle

    @abstractmethod
    async def open(self) -> None:
        """Connect and bring the schema to the latest version (idempotent)."""

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def schema_version(self) -> int:
        pass

    @asynccontextmanager
    async def transaction(self):
        """All writes in the block commit together or roll back together."""
        self._begin()
        try:
            yield self
        except BaseException:
            self._rollback()
            raise
        else:
            self._commit()

    @abstractmethod
    def _begin(self) -> None:
        pass

    @abstractmethod
    def _commit(self) -> None:
        pass

    @abstractmethod
    def _rollback(self) -> None:
        pass

    # Row primitives

    @abstractmethod
    def _get_user(self, email: str) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def _put_user(self, row: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def _delete_user(self, email: str) -> None:
        pass

    @abstractmethod
    def _select_owned(self, store: str, owner_email: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def _select_all(self, store: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    def _get_row(self, store: str, record_id: int) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    def _insert_row(self, store: str, row: Dict[str, Any]) -> int:
        pass

    @abstractmethod
    def _update_row(self, store: str, row: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    def _delete_row(self, store: str, record_id: int) -> None:
        pass

    @abstractmethod
    def _upsert_index(self, row: Dict[str, Any]) -> int:
        pass

    @abstractmethod
    def _delete_index_ref(self, owner_email: str, kind: str, ref_id: str) -> None:
        pass
