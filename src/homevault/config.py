# HomeVault - Runtime Configuration
#
# All settings come from environment variables (optionally loaded from a
# .env file). The storage backend is chosen here, once, at startup; the hosting
# runtime is never inspected later on.

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

BACKEND_SQLITE = "sqlite"
BACKEND_OBJECT = "object"
SUPPORTED_BACKENDS = (BACKEND_SQLITE, BACKEND_OBJECT)

DEFAULT_DATA_DIR = Path.home() / ".homevault"
DEFAULT_KDF_ITERATIONS = 600_000  # OWASP 2023 guidance for PBKDF2-SHA256

DATABASE_FILE_NAME = "homevault.db"
OBJECT_STORE_FILE_NAME = "homevault.json"
SESSION_FILE_NAME = "local_storage.json"
VAULT_DIR_NAME = "vault"


@dataclass
class VaultSettings:
    """Resolved runtime settings.

    Attributes:
        data_dir: Root directory for the database, blobs and session file
        backend: Storage backend name ("sqlite" or "object")
        kdf_iterations: PBKDF2 iteration count for master key derivation
        log_dir: Audit log directory (defaults to data_dir/audit_logs)
        api_host: Bind host for the local API
        api_port: Bind port for the local API
    """
    data_dir: Path = DEFAULT_DATA_DIR
    backend: str = BACKEND_SQLITE
    kdf_iterations: int = DEFAULT_KDF_ITERATIONS
    log_dir: Optional[Path] = None
    api_host: str = "127.0.0.1"
    api_port: int = 8765

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.log_dir is None:
            self.log_dir = self.data_dir / "audit_logs"
        else:
            self.log_dir = Path(self.log_dir)

    @property
    def database_path(self) -> Path:
        return self.data_dir / DATABASE_FILE_NAME

    @property
    def object_store_path(self) -> Path:
        return self.data_dir / OBJECT_STORE_FILE_NAME

    @property
    def session_path(self) -> Path:
        return self.data_dir / SESSION_FILE_NAME

    @property
    def vault_root(self) -> Path:
        return self.data_dir / VAULT_DIR_NAME


def load_settings(env_file: Optional[str] = None) -> VaultSettings:
    """
    Build settings from the environment.

    Args:
        env_file: Optional path to a .env file (default: search from cwd)

    Returns:
        VaultSettings with every value resolved

    Raises:
        ValueError: If a numeric setting cannot be parsed
    """
    load_dotenv(env_file)

    data_dir = os.getenv("HOMEVAULT_DATA_DIR")
    log_dir = os.getenv("HOMEVAULT_LOG_DIR")

    return VaultSettings(
        data_dir=Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR,
        backend=os.getenv("HOMEVAULT_BACKEND", BACKEND_SQLITE).strip().lower(),
        kdf_iterations=int(os.getenv("HOMEVAULT_KDF_ITERATIONS", str(DEFAULT_KDF_ITERATIONS))),
        log_dir=Path(log_dir).expanduser() if log_dir else None,
        api_host=os.getenv("HOMEVAULT_API_HOST", "127.0.0.1"),
        api_port=int(os.getenv("HOMEVAULT_API_PORT", "8765")),
    )
