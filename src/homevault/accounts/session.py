# HomeVault - Session State
#
# The active session is an explicit object handed back to callers. It can
# be persisted to a small key/value JSON file (the "local storage" of the
# host) so the next start restores it silently.
#
# NOTE: the persisted record carries the raw master key (base64). Anyone
# who can read the session file can decrypt the vault.

import base64
import binascii
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple, Union

from ..core.files import read_json, write_json_atomic

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "homevault-session"


@dataclass
class Session:
    """An unlocked account: the email plus its current master key."""
    email: str
    key: bytes
    must_change_password: bool = False

    def __repr__(self) -> str:
        return f"Session(email={self.email!r}, must_change_password={self.must_change_password})"


class SessionStore:
    """
    JSON key/value file holding the persisted session.

    Usage:
        store = SessionStore(settings.session_path)
        store.save(session)
        email, key = store.load()
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def _read_all(self) -> dict:
        try:
            data = read_json(self.path, default={})
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable session file {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def save(self, session: Session) -> None:
        data = self._read_all()
        data[SESSION_STORAGE_KEY] = {
            "email": session.email,
            "key": base64.b64encode(session.key).decode("utf-8"),
        }
        write_json_atomic(self.path, data)

    def load(self) -> Optional[Tuple[str, bytes]]:
        """Return (email, key) or None when nothing valid is stored."""
        record = self._read_all().get(SESSION_STORAGE_KEY)
        if not isinstance(record, dict):
            return None
        email = record.get("email")
        encoded = record.get("key")
        if not isinstance(email, str) or not email or not isinstance(encoded, str):
            return None
        try:
            key = base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError):
            logger.warning("Persisted session key is not valid base64; ignoring it")
            return None
        return email, key

    def clear(self) -> None:
        data = self._read_all()
        if SESSION_STORAGE_KEY not in data:
            return
        del data[SESSION_STORAGE_KEY]
        write_json_atomic(self.path, data)
