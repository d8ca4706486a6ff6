# HomeVault - API Security
#
# Generates a random session token on startup; every API endpoint requires
# it in the X-Session-Token header so other local processes cannot reach
# the vault. Vault routes additionally need an unlocked account session.

import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from ..accounts import Session
from .services import services

# Global session token (generated once per backend instance)
_SESSION_TOKEN: Optional[str] = None


def initialize_session_token() -> str:
    """
    Generate a new session token for this backend instance.

    Returns:
        The generated token (handed to the local UI at startup)
    """
    global _SESSION_TOKEN
    # 256-bit token
    _SESSION_TOKEN = secrets.token_urlsafe(32)
    return _SESSION_TOKEN


def get_session_token() -> str:
    """
    Raises:
        RuntimeError: If the token hasn't been initialized
    """
    if _SESSION_TOKEN is None:
        raise RuntimeError("Session token not initialized. Call initialize_session_token() first.")
    return _SESSION_TOKEN


async def verify_session_token(x_session_token: str = Header(None)) -> str:
    """
    FastAPI dependency to verify the per-process session token.

    Raises:
        HTTPException: 503 before initialization, 401 if missing or invalid
    """
    if _SESSION_TOKEN is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session token not initialized"
        )

    if x_session_token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Session-Token header"
        )

    # Constant-time comparison
    if not secrets.compare_digest(x_session_token, _SESSION_TOKEN):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid session token"
        )

    return x_session_token


async def require_engine() -> None:
    if not services.is_started:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Vault engine not started"
        )


async def require_unlocked_session() -> Session:
    """FastAPI dependency: the active account session, or 403 when locked."""
    await require_engine()
    if services.session is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Vault is locked. Log in first."
        )
    return services.session
