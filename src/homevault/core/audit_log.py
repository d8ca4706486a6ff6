# HomeVault - Audit Logging
#
# Append-only structured log of account and vault security events.
# Every account lifecycle step (register, login, password change, recovery,
# deletion, mnemonic reveal) and every applied schema migration is recorded
# with a timestamp and an event ID. Secrets, keys and mnemonic words are
# never written here.

import logging
import sys
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog


class EventType(str, Enum):
    """
    Types of security events that can be logged.
    """
    # Account lifecycle
    ACCOUNT_REGISTERED = "account.registered"
    ACCOUNT_LOGIN = "account.login"
    ACCOUNT_LOGIN_FAILED = "account.login.failed"
    ACCOUNT_LOGOUT = "account.logout"
    ACCOUNT_PROFILE_UPDATED = "account.profile.updated"
    ACCOUNT_DELETED = "account.deleted"

    # Key rotation & recovery
    PASSWORD_CHANGED = "password.changed"
    PASSWORD_CHANGE_FAILED = "password.change.failed"
    PASSWORD_RECOVERED = "password.recovered"
    RECOVERY_FAILED = "recovery.failed"
    MNEMONIC_REVEALED = "mnemonic.revealed"

    # Vault content
    CREDENTIAL_ADDED = "vault.credential.added"
    CREDENTIAL_ACCESSED = "vault.credential.accessed"
    CREDENTIAL_DELETED = "vault.credential.deleted"
    DOCUMENT_ADDED = "vault.document.added"
    DOCUMENT_DELETED = "vault.document.deleted"
    BACKUP_EXPORTED = "vault.backup.exported"
    BACKUP_IMPORTED = "vault.backup.imported"

    # Storage
    MIGRATION_APPLIED = "storage.migration.applied"
    MIGRATION_FAILED = "storage.migration.failed"

    # System Events
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"


class EventSeverity(str, Enum):
    """
    Severity levels for security events.

    - INFO: Normal activity (logged only)
    - INVESTIGATE: Something unusual, e.g. a failed login
    - ALERT: A protective action was taken
    - CRITICAL: Data may be at risk
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


class AuditLogger:
    """
    Append-only audit logger for vault security events.

    Features:
    - Structured JSON logging (structlog)
    - Automatic timestamp and event ID
    - Daily log files under the configured directory
    """

    def __init__(self, log_dir: Optional[Path] = None):
        """
        Initialize audit logger.

        Args:
            log_dir: Directory for audit logs (default: ./audit_logs)
        """
        self.log_dir = Path(log_dir) if log_dir else Path("./audit_logs")
        self.log_dir.mkdir(parents=True, exist_ok=True)

        # Setup structured logging
        structlog.configure(
            processors=[
                structlog.stdlib.add_log_level,
                structlog.stdlib.add_logger_name,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer()
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._setup_file_handler()
        self.logger = structlog.get_logger("homevault.audit")

    def _setup_file_handler(self):
        """Attach a daily file handler to the audit logger."""
        today = datetime.now().strftime("%Y-%m-%d")
        log_file = self.log_dir / f"audit_{today}.log"

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))  # structlog handles formatting

        audit_logger = logging.getLogger("homevault.audit")
        audit_logger.addHandler(file_handler)
        audit_logger.setLevel(logging.INFO)
        self._file_handler = file_handler

    def close(self):
        """Detach and close the file handler."""
        logging.getLogger("homevault.audit").removeHandler(self._file_handler)
        self._file_handler.close()

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_context: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log a security event (append-only).

        Args:
            event_type: Type of event (from EventType enum)
            severity: Severity level (from EventSeverity enum)
            message: Human-readable event description
            details: Additional event details (never secrets)
            user_context: Account context (email, etc.)

        Returns:
            str: Event ID (UUID) for reference
        """
        event_id = str(uuid4())

        event_data = {
            "event_id": event_id,
            "event_type": event_type.value,
            "severity": severity.value,
            "message": message,
            "timestamp": datetime.utcnow().isoformat(),
            "details": details or {},
            "user_context": user_context or self._get_default_user_context(),
        }

        self.logger.info("security_event", **event_data)
        return event_id

    def log_account_event(
        self,
        event_type: EventType,
        email: str,
        message: str,
        severity: EventSeverity = EventSeverity.INFO,
        details: Optional[Dict[str, Any]] = None
    ) -> str:
        """
        Log an account lifecycle event.

        Args:
            event_type: Type of account event
            email: Normalized account email
            message: Event description
            severity: Event severity
            details: Additional details (never passwords, keys or mnemonics!)

        Returns:
            str: Event ID
        """
        context = self._get_default_user_context()
        context["account"] = email
        return self.log_event(
            event_type=event_type,
            severity=severity,
            message=f"Account: {message}",
            details=details,
            user_context=context,
        )

    def _get_default_user_context(self) -> Dict[str, Any]:
        """Get default user context (OS user, hostname, etc.)."""
        import os
        import socket

        return {
            "os_user": os.getenv("USERNAME") or os.getenv("USER"),
            "hostname": socket.gethostname(),
            "platform": sys.platform,
        }


# Global logger instance
_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Get global audit logger (singleton pattern)."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def configure_audit_logger(log_dir: Path) -> AuditLogger:
    """Replace the global audit logger with one writing to ``log_dir``."""
    global _audit_logger
    if _audit_logger is not None:
        _audit_logger.close()
    _audit_logger = AuditLogger(log_dir=log_dir)
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    **kwargs
) -> str:
    """
    Convenience function for logging security events.

    Usage:
        log_security_event(
            EventType.MIGRATION_APPLIED,
            EventSeverity.INFO,
            "Applied schema migration 5",
            details={"version": 5}
        )
    """
    return get_audit_logger().log_event(event_type, severity, message, **kwargs)
