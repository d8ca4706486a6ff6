# HomeVault - Attachment Vault
#
# Content-addressed blob storage for document attachments.
#
#   <data root>/vault/<sha256 hex>-<sanitized display name>
#
# Identical bytes are stored once: a blob whose name starts with the same
# hash is reused whatever display name it was first imported under.
# Stored relative paths always start with "vault/" and never contain a
# parent-directory segment.

import hashlib
import logging
import mimetypes
import os
import re
import subprocess
import sys
import webbrowser
from pathlib import Path
from typing import Optional, Protocol, Union
from urllib.parse import urlparse

from ..config import VAULT_DIR_NAME
from ..errors import PathSecurityError, StorageError
from ..storage.models import DocumentPayload, FileMeta, LinkMeta

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"
DEFAULT_FILE_NAME = "document"

_UNSAFE_CHARS = re.compile(r'[\\/:*?"<>|]')
_WHITESPACE = re.compile(r"\s+")
# Schemes without "//" that are still absolute targets
_OPAQUE_SCHEMES = ("mailto", "tel", "sms", "data", "file")


def sanitize_file_name(name: Optional[str]) -> str:
    """Make a display name safe to embed in a stored file name."""
    cleaned = _UNSAFE_CHARS.sub("_", name or "")
    cleaned = _WHITESPACE.sub(" ", cleaned).strip()
    return cleaned or DEFAULT_FILE_NAME


def normalize_url(raw: Optional[str]) -> str:
    """
    Canonical form of a user-entered link.

    "example.com/x" -> "https://example.com/x"
    "//cdn.example.com" -> "https://cdn.example.com"
    Absolute URLs are returned unchanged.
    """
    trimmed = (raw or "").strip()
    if not trimmed:
        return ""
    parsed = urlparse(trimmed)
    if parsed.scheme and (parsed.netloc or parsed.scheme.lower() in _OPAQUE_SCHEMES):
        return trimmed
    if trimmed.startswith("//"):
        return f"https:{trimmed}"
    return f"https://{trimmed}"


class HostShell(Protocol):
    """Host facility that opens files and URLs outside the engine."""

    def open_path(self, path: str) -> None:
        ...

    def open_url(self, url: str) -> None:
        ...


class SystemShell:
    """Opens targets with the platform's default handler."""

    def open_path(self, path: str) -> None:
        if sys.platform == "win32":
            os.startfile(path)
        elif sys.platform == "darwin":
            subprocess.Popen(["open", path])
        else:
            subprocess.Popen(["xdg-open", path])

    def open_url(self, url: str) -> None:
        webbrowser.open(url)


class AttachmentVault:
    """
    Blob store rooted at ``<data_root>/vault``.

    Usage:
        vault = AttachmentVault(settings.data_dir)
        meta = await vault.import_file(data, "passport.pdf")
        path = vault.resolve_path(meta.rel_path)
    """

    def __init__(self, data_root: Union[str, Path], shell: Optional[HostShell] = None):
        self.data_root = Path(data_root).resolve()
        self.vault_root = self.data_root / VAULT_DIR_NAME
        self.shell = shell or SystemShell()

    async def import_file(self, data: bytes, display_name: str, mime: Optional[str] = None) -> FileMeta:
        """
        Store ``data`` and return its metadata.

        Raises:
            StorageError: The blob could not be written
        """
        name = sanitize_file_name(display_name)
        sha = hashlib.sha256(data).hexdigest()
        stored_name = self._find_blob(sha) or f"{sha}-{name}"
        target = self.vault_root / stored_name

        if not target.exists():
            try:
                self.vault_root.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            except OSError as e:
                raise StorageError(f"Failed to write attachment {stored_name}: {e}") from e
            logger.info(f"Attachment stored: {stored_name} ({len(data)} bytes)")
        else:
            logger.debug(f"Attachment {sha[:12]} already stored, reusing")

        return FileMeta(
            name=name,
            rel_path=f"{VAULT_DIR_NAME}/{stored_name}",
            size=len(data),
            mime=mime or mimetypes.guess_type(name)[0] or DEFAULT_MIME,
            sha256=sha,
        )

    def _find_blob(self, sha: str) -> Optional[str]:
        if not self.vault_root.is_dir():
            return None
        for entry in sorted(self.vault_root.glob(f"{sha}-*")):
            if entry.is_file():
                return entry.name
        return None

    def resolve_path(self, rel_path: str) -> Path:
        """
        Absolute path of a stored relative path.

        Raises:
            PathSecurityError: The path has a ".." segment or escapes the vault
        """
        cleaned = (rel_path or "").replace("\\", "/").lstrip("/")
        segments = [segment for segment in cleaned.split("/") if segment]
        if not segments:
            raise PathSecurityError("Empty attachment path")
        if ".." in segments:
            raise PathSecurityError(f"Parent directory segment in attachment path: {rel_path!r}")

        resolved = self.data_root.joinpath(*segments).resolve()
        try:
            resolved.relative_to(self.vault_root.resolve())
        except ValueError as e:
            raise PathSecurityError(f"Attachment path escapes the vault: {rel_path!r}") from e
        return resolved

    async def remove_file(self, rel_path: str) -> None:
        """Delete a blob. Never raises; failures are only logged."""
        try:
            path = self.resolve_path(rel_path)
            path.unlink()
            logger.info(f"Attachment removed: {rel_path}")
        except FileNotFoundError:
            logger.debug(f"Attachment already gone: {rel_path}")
        except (OSError, PathSecurityError) as e:
            logger.warning(f"Failed to remove attachment {rel_path}: {e}")

    async def open_document(self, target: Union[DocumentPayload, FileMeta, LinkMeta, None]) -> None:
        """Hand a stored file or a link to the host shell; a file wins over a link."""
        if isinstance(target, DocumentPayload):
            target = target.file or target.link
        if isinstance(target, FileMeta):
            self.shell.open_path(str(self.resolve_path(target.rel_path)))
        elif isinstance(target, LinkMeta):
            url = normalize_url(target.url)
            if url:
                self.shell.open_url(url)
