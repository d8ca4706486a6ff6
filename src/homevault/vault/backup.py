# HomeVault - Encrypted Account Backup
#
# Versioned backup payload for one account: credentials (with their
# plaintext secrets), sites and document records. The payload is JSON,
# encrypted as a whole under the account's master key; attachment blobs
# are referenced by their vault path, not embedded.
#
# Payload (version 1):
#   {"version": 1, "exported_at": ms, "email": "...",
#    "credentials": [{title, username, password, url, tags, created_at, updated_at}],
#    "sites":       [{title, url, description, tags, created_at, updated_at}],
#    "documents":   [{title, description, document, tags, created_at, updated_at}]}

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ValidationError
from ..storage.models import CredentialEntry, DocumentPayload, DocumentRecord, SiteRecord, now_ms
from ..tags import ensure_tags_array

BACKUP_VERSION = 1


@dataclass
class BackupSummary:
    """What an import wrote for the account."""
    email: str
    credentials: int
    sites: int
    documents: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "email": self.email,
            "credentials": self.credentials,
            "sites": self.sites,
            "documents": self.documents,
        }


@dataclass
class BackupContents:
    email: str
    exported_at: int
    credentials: List[Tuple[CredentialEntry, str]]
    sites: List[SiteRecord]
    documents: List[DocumentRecord]


def _timestamp(value: Any, fallback: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return fallback
    return number if number > 0 else fallback


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _optional_text(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip() or None


def _items(data: Dict[str, Any], name: str) -> List[Dict[str, Any]]:
    value = data.get(name)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"Backup field {name!r} must be a list")
    return [item for item in value if isinstance(item, dict)]


def dump_backup_payload(
    email: str,
    credentials: List[Tuple[CredentialEntry, str]],
    sites: List[SiteRecord],
    documents: List[DocumentRecord],
) -> str:
    """
    Serialize an account's records to the backup JSON.

    Args:
        email: Owner of the records
        credentials: (entry, decrypted secret) pairs
        sites: Site records
        documents: Document records
    """
    payload = {
        "version": BACKUP_VERSION,
        "exported_at": now_ms(),
        "email": email,
        "credentials": [
            {
                "title": entry.title,
                "username": entry.username,
                "password": secret,
                "url": entry.url,
                "tags": list(entry.tags),
                "created_at": entry.created_at,
                "updated_at": entry.updated_at,
            }
            for entry, secret in credentials
        ],
        "sites": [
            {
                "title": site.title,
                "url": site.url,
                "description": site.description,
                "tags": list(site.tags),
                "created_at": site.created_at,
                "updated_at": site.updated_at,
            }
            for site in sites
        ],
        "documents": [
            {
                "title": doc.title,
                "description": doc.description,
                "document": doc.document.to_dict() if doc.document else None,
                "tags": list(doc.tags),
                "created_at": doc.created_at,
                "updated_at": doc.updated_at,
            }
            for doc in documents
        ],
    }
    return json.dumps(payload, ensure_ascii=False)


def load_backup_payload(text: str, owner_email: str) -> BackupContents:
    """
    Parse and validate decrypted backup JSON for the given owner.

    Records come back without ids, owned by owner_email. Timestamps that
    are missing or invalid fall back to the export time.

    Raises:
        ValidationError: Not JSON, unsupported version, another account's
            backup, or a malformed document payload
    """
    try:
        data = json.loads(text)
    except (TypeError, ValueError) as e:
        raise ValidationError("Backup is not valid JSON") from e
    if not isinstance(data, dict):
        raise ValidationError("Backup payload must be an object")

    version = data.get("version", BACKUP_VERSION)
    if isinstance(version, bool) or not isinstance(version, int) or not 1 <= version <= BACKUP_VERSION:
        raise ValidationError(f"Unsupported backup version: {version!r}")

    email = _text(data.get("email")).strip().lower()
    if email and email != owner_email:
        raise ValidationError("This backup belongs to another account")

    exported_at = _timestamp(data.get("exported_at"), now_ms())

    credentials = []
    for item in _items(data, "credentials"):
        created_at = _timestamp(item.get("created_at"), exported_at)
        entry = CredentialEntry(
            owner_email=owner_email,
            title=_text(item.get("title")),
            username=_text(item.get("username")),
            password_cipher="",
            url=_optional_text(item.get("url")),
            tags=ensure_tags_array(item.get("tags")),
            created_at=created_at,
            updated_at=_timestamp(item.get("updated_at"), created_at),
        )
        credentials.append((entry, _text(item.get("password"))))

    sites = []
    for item in _items(data, "sites"):
        created_at = _timestamp(item.get("created_at"), exported_at)
        sites.append(SiteRecord(
            owner_email=owner_email,
            title=_text(item.get("title")),
            url=_text(item.get("url")),
            description=_optional_text(item.get("description")),
            tags=ensure_tags_array(item.get("tags")),
            created_at=created_at,
            updated_at=_timestamp(item.get("updated_at"), created_at),
        ))

    documents = []
    for item in _items(data, "documents"):
        created_at = _timestamp(item.get("created_at"), exported_at)
        documents.append(DocumentRecord(
            owner_email=owner_email,
            title=_text(item.get("title")),
            description=_optional_text(item.get("description")),
            document=DocumentPayload.from_dict(item.get("document")),
            tags=ensure_tags_array(item.get("tags")),
            created_at=created_at,
            updated_at=_timestamp(item.get("updated_at"), created_at),
        ))

    return BackupContents(
        email=owner_email,
        exported_at=exported_at,
        credentials=credentials,
        sites=sites,
        documents=documents,
    )
