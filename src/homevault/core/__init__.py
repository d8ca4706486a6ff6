# HomeVault - Core Module
#
# Shared functionality across the vault engine:
# - Audit logging
# - SQLite connection helper
# - Atomic JSON files

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    configure_audit_logger,
    get_audit_logger,
    log_security_event,
)
from .db import connect
from .files import read_json, write_json_atomic

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "configure_audit_logger",
    "get_audit_logger",
    "log_security_event",
    # SQLite
    "connect",
    # JSON files
    "read_json",
    "write_json_atomic",
]
