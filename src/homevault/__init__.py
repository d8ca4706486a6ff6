# HomeVault - Main Package
#
# Local-first encrypted personal vault: credentials, bookmarked sites and
# documents for one or more local accounts, with no server-side component.

__version__ = "0.3.0"
__author__ = "HomeVault Team"
__description__ = "Local-first encrypted personal vault engine"

from .errors import (
    AuthError,
    DecryptionError,
    MigrationError,
    PathSecurityError,
    RecoveryError,
    StorageError,
    ValidationError,
    VaultError,
)

__all__ = [
    "__version__",
    "VaultError",
    "ValidationError",
    "AuthError",
    "DecryptionError",
    "StorageError",
    "MigrationError",
    "PathSecurityError",
    "RecoveryError",
]
