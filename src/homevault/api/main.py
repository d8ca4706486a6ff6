# HomeVault - FastAPI Backend
#
# Local REST API the desktop UI talks to. Binds to localhost only; every
# route needs the per-process session token handed out by /api/session.

import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .. import __version__
from ..config import load_settings
from ..core import EventSeverity, EventType, configure_audit_logger, get_audit_logger
from ..errors import (
    AuthError,
    DecryptionError,
    PathSecurityError,
    RecoveryError,
    StorageError,
    ValidationError,
    VaultError,
)
from .account_routes import router as account_router
from .security import get_session_token, initialize_session_token
from .services import services
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)

# FastAPI app
app = FastAPI(
    title="HomeVault API",
    description="Local-first encrypted personal vault",
    version=__version__,
)

# Local UI origins only
_allowed_origins = [
    "http://localhost:3000", "http://127.0.0.1:3000",
    "http://localhost:5173", "http://127.0.0.1:5173",
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(account_router)
app.include_router(vault_router)


# Engine error -> HTTP status. Order matters: subclasses before VaultError.
_ERROR_STATUS = (
    (ValidationError, 400),
    (PathSecurityError, 400),
    (AuthError, 401),
    (RecoveryError, 403),
    (DecryptionError, 409),
    (StorageError, 500),
)


@app.exception_handler(VaultError)
async def vault_error_handler(request: Request, exc: VaultError):
    status_code = 500
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.on_event("startup")
async def startup_event():
    """Open the vault engine and generate the session token."""
    settings = load_settings()
    configure_audit_logger(settings.log_dir)
    initialize_session_token()

    await services.start(settings)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="HomeVault API server starting (session token initialized)",
        details={"backend": settings.backend},
    )


@app.on_event("shutdown")
async def shutdown_event():
    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_STOP,
        severity=EventSeverity.INFO,
        message="HomeVault API server shutting down",
    )
    await services.stop()


@app.get("/api/session")
async def get_session():
    """
    Get session token for API authentication.

    Unprotected: the local UI calls this once on load and sends the token in
    the X-Session-Token header afterwards. The token is random (256 bits),
    changes on every restart, and the server only listens on localhost.
    """
    return {
        "session_token": get_session_token()
    }


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": "HomeVault API",
        "version": __version__,
        "status": "operational" if services.is_started else "starting",
        "backend": services.settings.backend if services.settings else None,
    }


def start_api_server(host: str = "127.0.0.1", port: int = 8765):
    """
    Start FastAPI server.

    Args:
        host: Host to bind to (default: localhost only for security)
        port: Port to listen on
    """
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    start_api_server()
