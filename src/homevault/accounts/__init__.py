# HomeVault - Accounts Module

from .service import (
    AccountService,
    RecoveryChallenge,
    RegistrationResult,
    normalize_email,
)
from .session import SESSION_STORAGE_KEY, Session, SessionStore

__all__ = [
    "AccountService",
    "RecoveryChallenge",
    "RegistrationResult",
    "normalize_email",
    "SESSION_STORAGE_KEY",
    "Session",
    "SessionStore",
]
