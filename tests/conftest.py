"""
Shared pytest fixtures for the HomeVault test suite.

Autouse fixtures below isolate tests from the live application data:
  - Audit logger -> temp directory (prevents test events in ~/.homevault)
"""

import pytest
import pytest_asyncio

from homevault.accounts import AccountService, SessionStore
from homevault.storage import ObjectStoreBackend, SqliteBackend
from homevault.vault import AttachmentVault, VaultItems

# PBKDF2 at the production work factor makes every register/login take
# most of a second; tests derive keys with a tiny iteration count.
TEST_KDF_ITERATIONS = 1000

STRONG_PASSWORD = "Correct-Horse-Battery-9"
OTHER_STRONG_PASSWORD = "Brand-New-Secret-42x"


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import homevault.core.audit_log as audit_mod

    # Reset the singleton so the next call to get_audit_logger() creates
    # a fresh instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


class RecordingShell:
    """HostShell stand-in that remembers what it was asked to open."""

    def __init__(self):
        self.paths = []
        self.urls = []

    def open_path(self, path: str) -> None:
        self.paths.append(path)

    def open_url(self, url: str) -> None:
        self.urls.append(url)


@pytest.fixture(params=["sqlite", "object"])
def backend_factory(request, tmp_path):
    """Builds an unopened backend of each kind under tmp_path."""
    def build(migrations=None, name="store"):
        if request.param == "sqlite":
            return SqliteBackend(tmp_path / f"{name}.db", migrations=migrations)
        return ObjectStoreBackend(tmp_path / f"{name}.json", migrations=migrations)
    build.kind = request.param
    return build


@pytest_asyncio.fixture
async def backend(backend_factory):
    store = backend_factory()
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def shell():
    return RecordingShell()


@pytest.fixture
def vault(tmp_path, shell):
    return AttachmentVault(tmp_path / "data", shell=shell)


@pytest.fixture
def session_store(tmp_path):
    return SessionStore(tmp_path / "data" / "local_storage.json")


@pytest.fixture
def accounts(backend, vault, session_store):
    return AccountService(backend, vault, session_store, kdf_iterations=TEST_KDF_ITERATIONS)


@pytest.fixture
def items(backend, vault):
    return VaultItems(backend, vault)


@pytest_asyncio.fixture
async def session(accounts):
    """A registered, logged-in account."""
    result = await accounts.register("alice@example.com", STRONG_PASSWORD)
    return result.session
