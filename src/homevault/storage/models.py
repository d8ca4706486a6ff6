# HomeVault - Record Models
#
# Plain dataclasses shared by every storage backend. Timestamps are integer
# milliseconds since the Unix epoch.

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from ..errors import ValidationError
from ..tags import ensure_tags_array

DOCUMENT_KIND_FILE = "file"
DOCUMENT_KIND_LINK = "link"
DOCUMENT_KIND_FILE_LINK = "file+link"
DOCUMENT_KINDS = (DOCUMENT_KIND_FILE, DOCUMENT_KIND_LINK, DOCUMENT_KIND_FILE_LINK)

SEARCH_KIND_PASSWORD = "password"
SEARCH_KIND_SITE = "site"
SEARCH_KIND_DOC = "doc"
SEARCH_KINDS = (SEARCH_KIND_PASSWORD, SEARCH_KIND_SITE, SEARCH_KIND_DOC)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def fallback_display_name(email: str, display_name: Optional[str] = None) -> str:
    """Display name, or the email's local part when none is set."""
    trimmed = " ".join((display_name or "").split())
    if trimmed:
        return trimmed
    prefix = (email or "").split("@")[0].strip()
    return prefix or email or "user"


@dataclass
class AvatarMeta:
    """Profile picture stored inline as a data URL."""
    data_url: str
    mime: str = "image/png"
    size: int = 0
    width: int = 0
    height: int = 0
    updated_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["AvatarMeta"]:
        if not isinstance(data, dict) or not isinstance(data.get("data_url"), str) or not data["data_url"]:
            return None
        return cls(
            data_url=data["data_url"],
            mime=data.get("mime") if isinstance(data.get("mime"), str) else "image/png",
            size=int(data.get("size") or 0),
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
            updated_at=int(data.get("updated_at") or now_ms()),
        )


@dataclass
class Account:
    """
    A local account.

    Attributes:
        email: Unique key (trimmed, lower-cased)
        salt: Base64 PBKDF2 salt
        key_hash: Base64 SHA-256 of the derived master key
        mnemonic: Space-joined recovery phrase
        recovery_cipher: Master key wrapped under the mnemonic-derived key
        must_change_password: Set at registration, cleared by a password change
    """
    email: str
    salt: str
    key_hash: str
    display_name: str = ""
    avatar: Optional[AvatarMeta] = None
    mnemonic: str = ""
    recovery_cipher: Optional[str] = None
    must_change_password: bool = False
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    @property
    def mnemonic_words(self) -> List[str]:
        return self.mnemonic.split() if self.mnemonic else []

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["avatar"] = self.avatar.to_dict() if self.avatar else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        email = str(data.get("email") or "")
        return cls(
            email=email,
            salt=str(data.get("salt") or ""),
            key_hash=str(data.get("key_hash") or ""),
            display_name=fallback_display_name(email, data.get("display_name")),
            avatar=AvatarMeta.from_dict(data.get("avatar")),
            mnemonic=str(data.get("mnemonic") or ""),
            recovery_cipher=data.get("recovery_cipher") or None,
            must_change_password=bool(data.get("must_change_password")),
            created_at=int(data.get("created_at") or 0),
            updated_at=int(data.get("updated_at") or 0),
        )


@dataclass
class CredentialEntry:
    """A stored credential; the secret is only ever held as a cipher blob."""
    owner_email: str
    title: str
    username: str
    password_cipher: str
    url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CredentialEntry":
        created_at = int(data.get("created_at") or 0)
        return cls(
            id=data.get("id"),
            owner_email=str(data.get("owner_email") or ""),
            title=str(data.get("title") or ""),
            username=str(data.get("username") or ""),
            password_cipher=str(data.get("password_cipher") or ""),
            url=data.get("url") or None,
            tags=ensure_tags_array(data.get("tags")),
            created_at=created_at,
            updated_at=int(data.get("updated_at") or created_at),
        )


@dataclass
class SiteRecord:
    owner_email: str
    title: str
    url: str
    description: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SiteRecord":
        created_at = int(data.get("created_at") or 0)
        return cls(
            id=data.get("id"),
            owner_email=str(data.get("owner_email") or ""),
            title=str(data.get("title") or ""),
            url=str(data.get("url") or ""),
            description=data.get("description") or None,
            tags=ensure_tags_array(data.get("tags")),
            created_at=created_at,
            updated_at=int(data.get("updated_at") or created_at),
        )


@dataclass
class FileMeta:
    """Metadata of an attachment blob in the vault directory."""
    name: str
    rel_path: str
    size: int
    mime: str
    sha256: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileMeta":
        return cls(
            name=str(data.get("name") or ""),
            rel_path=str(data.get("rel_path") or ""),
            size=int(data.get("size") or 0),
            mime=str(data.get("mime") or "application/octet-stream"),
            sha256=str(data.get("sha256") or ""),
        )


@dataclass
class LinkMeta:
    url: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DocumentPayload:
    """
    Tagged variant: ``file`` (file only), ``link`` (link only) or
    ``file+link`` (both).
    """
    kind: str
    file: Optional[FileMeta] = None
    link: Optional[LinkMeta] = None

    def __post_init__(self):
        if self.kind not in DOCUMENT_KINDS:
            raise ValidationError(f"Unknown document kind: {self.kind!r}")
        needs_file = self.kind in (DOCUMENT_KIND_FILE, DOCUMENT_KIND_FILE_LINK)
        needs_link = self.kind in (DOCUMENT_KIND_LINK, DOCUMENT_KIND_FILE_LINK)
        if needs_file != (self.file is not None) or needs_link != (self.link is not None):
            raise ValidationError(f"Document payload does not match kind {self.kind!r}")

    @classmethod
    def build(cls, file: Optional[FileMeta] = None, link: Optional[LinkMeta] = None) -> "DocumentPayload":
        if file and link:
            return cls(DOCUMENT_KIND_FILE_LINK, file=file, link=link)
        if file:
            return cls(DOCUMENT_KIND_FILE, file=file)
        if link:
            return cls(DOCUMENT_KIND_LINK, link=link)
        raise ValidationError("A document needs a file, a link, or both")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"kind": self.kind}
        if self.file is not None:
            data["file"] = self.file.to_dict()
        if self.link is not None:
            data["link"] = self.link.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["DocumentPayload"]:
        if not isinstance(data, dict):
            return None
        file_data = data.get("file")
        link_data = data.get("link")
        return cls(
            kind=data.get("kind"),
            file=FileMeta.from_dict(file_data) if isinstance(file_data, dict) else None,
            link=LinkMeta(url=str(link_data.get("url") or "")) if isinstance(link_data, dict) else None,
        )


@dataclass
class DocumentRecord:
    owner_email: str
    title: str
    description: Optional[str] = None
    document: Optional[DocumentPayload] = None
    tags: List[str] = field(default_factory=list)
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)
    id: Optional[int] = None

    @property
    def file_path(self) -> Optional[str]:
        """Relative blob path when the payload carries a file."""
        if self.document is not None and self.document.file is not None:
            return self.document.file.rel_path
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["document"] = self.document.to_dict() if self.document else None
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DocumentRecord":
        created_at = int(data.get("created_at") or 0)
        return cls(
            id=data.get("id"),
            owner_email=str(data.get("owner_email") or ""),
            title=str(data.get("title") or ""),
            description=data.get("description") or None,
            document=DocumentPayload.from_dict(data.get("document")),
            tags=ensure_tags_array(data.get("tags")),
            created_at=created_at,
            updated_at=int(data.get("updated_at") or created_at),
        )


@dataclass
class SearchIndexRecord:
    """One searchable entry; unique per (owner_email, kind, ref_id)."""
    owner_email: str
    kind: str
    ref_id: str
    title: str
    subtitle: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    updated_at: int = field(default_factory=now_ms)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SearchIndexRecord":
        return cls(
            id=data.get("id"),
            owner_email=str(data.get("owner_email") or ""),
            kind=str(data.get("kind") or ""),
            ref_id=str(data.get("ref_id") or ""),
            title=str(data.get("title") or ""),
            subtitle=(data.get("subtitle") or "").strip() or None,
            keywords=list(data.get("keywords") or []),
            updated_at=int(data.get("updated_at") or 0),
        )
