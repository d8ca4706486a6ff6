"""
HomeVault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault engine operations"""
    pass


class ValidationError(VaultError):
    """Raised when input is malformed or missing"""
    pass


class AuthError(VaultError):
    """Raised on a wrong password or a missing account"""
    pass


class DecryptionError(VaultError):
    """Raised when a cipher blob fails authentication"""
    pass


class StorageError(VaultError):
    """Raised when the storage backend fails"""
    pass


class MigrationError(StorageError):
    """Raised when a schema migration step fails"""

    def __init__(self, message: str, version: int):
        super().__init__(message)
        self.version = version


class PathSecurityError(VaultError):
    """Raised when a relative path escapes the vault root"""
    pass


class RecoveryError(VaultError):
    """Raised when a mnemonic recovery challenge is not satisfied"""
    pass
