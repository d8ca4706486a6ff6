# HomeVault - Storage Module
#
# Owner-scoped record collections behind one interface, two backends and
# a forward-only migration engine. The backend is picked once from
# configuration; there is no runtime probing and no live switching.

from ..config import BACKEND_OBJECT, BACKEND_SQLITE, SUPPORTED_BACKENDS, VaultSettings
from ..errors import ValidationError
from .base import StorageBackend
from .migrations import Migration, MigrationEngine
from .models import (
    Account,
    AvatarMeta,
    CredentialEntry,
    DocumentPayload,
    DocumentRecord,
    FileMeta,
    LinkMeta,
    SearchIndexRecord,
    SiteRecord,
)
from .object_backend import OBJECT_STORE_MIGRATIONS, ObjectStoreBackend
from .sqlite_backend import SQLITE_MIGRATIONS, SqliteBackend


def create_backend(settings: VaultSettings) -> StorageBackend:
    """
    Build the backend named by ``settings.backend`` (not opened yet).

    Raises:
        ValidationError: Unknown backend name
    """
    if settings.backend == BACKEND_SQLITE:
        return SqliteBackend(settings.database_path)
    if settings.backend == BACKEND_OBJECT:
        return ObjectStoreBackend(settings.object_store_path)
    raise ValidationError(
        f"Unknown storage backend {settings.backend!r}; expected one of {', '.join(SUPPORTED_BACKENDS)}"
    )


__all__ = [
    "StorageBackend",
    "SqliteBackend",
    "ObjectStoreBackend",
    "create_backend",
    "Migration",
    "MigrationEngine",
    "SQLITE_MIGRATIONS",
    "OBJECT_STORE_MIGRATIONS",
    "Account",
    "AvatarMeta",
    "CredentialEntry",
    "SiteRecord",
    "DocumentRecord",
    "DocumentPayload",
    "FileMeta",
    "LinkMeta",
    "SearchIndexRecord",
]
