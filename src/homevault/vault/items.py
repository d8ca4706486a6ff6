# HomeVault - Vault Items
#
# Owner-scoped CRUD for credentials, sites and documents. Secrets are
# encrypted with the session key before they reach the backend, tags are
# normalized, document files go through the attachment vault, and every
# write refreshes the record's search index row. Whole-account backups
# are exported and imported encrypted under the session key.

import logging
from typing import Iterable, List, Optional

from ..accounts.session import Session
from ..core.audit_log import EventType, get_audit_logger
from ..crypto.cipher import CipherService
from ..errors import DecryptionError, ValidationError
from ..search import DEFAULT_SEARCH_LIMIT, build_index_record, search_entries
from ..storage.base import OwnedCollection, StorageBackend
from ..storage.models import (
    SEARCH_KIND_DOC,
    SEARCH_KIND_PASSWORD,
    SEARCH_KIND_SITE,
    CredentialEntry,
    DocumentPayload,
    DocumentRecord,
    LinkMeta,
    SearchIndexRecord,
    SiteRecord,
    now_ms,
)
from ..tags import matches_all_tags, normalize_tags
from .attachments import AttachmentVault, normalize_url
from .backup import BackupSummary, dump_backup_payload, load_backup_payload

logger = logging.getLogger(__name__)


def _require_text(value: Optional[str], field_name: str) -> str:
    text = (value or "").strip()
    if not text:
        raise ValidationError(f"{field_name} is required")
    return text


def _optional_text(value: Optional[str]) -> Optional[str]:
    text = (value or "").strip()
    return text or None


def _filter_by_tags(records: list, tags: Optional[Iterable[str]]) -> list:
    if not tags:
        return records
    required = list(tags)
    return [record for record in records if matches_all_tags(record.tags, required)]


class VaultItems:
    """
    Credentials, sites and documents of the session's account.

    Usage:
        items = VaultItems(backend, vault)
        entry = await items.add_credential(session, "Bank", "me", "s3cret!Value")
        secret = await items.reveal_secret(session, entry.id)
    """

    def __init__(self, backend: StorageBackend, vault: AttachmentVault):
        self.backend = backend
        self.vault = vault
        self.audit = get_audit_logger()

    async def _get_owned(self, collection: OwnedCollection, session: Session, record_id: int):
        """A record of the session's account; other owners' rows count as missing."""
        record = await collection.get(record_id)
        if record is None or record.owner_email != session.email:
            raise ValidationError(f"No such {collection.store} record: {record_id}")
        return record

    async def _index(self, record) -> None:
        await self.backend.search_index.put(build_index_record(record))

    # Credentials

    async def add_credential(
        self,
        session: Session,
        title: str,
        username: str,
        password: str,
        url: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> CredentialEntry:
        if not password:
            raise ValidationError("Password is required")
        now = now_ms()
        entry = CredentialEntry(
            owner_email=session.email,
            title=_require_text(title, "Title"),
            username=_require_text(username, "Username"),
            password_cipher=CipherService.encrypt(session.key, password),
            url=normalize_url(url) or None,
            tags=normalize_tags(tags or []),
            created_at=now,
            updated_at=now,
        )
        await self.backend.credentials.add(entry)
        await self._index(entry)
        self.audit.log_account_event(
            EventType.CREDENTIAL_ADDED, session.email, "credential added", details={"id": entry.id}
        )
        return entry

    async def update_credential(
        self,
        session: Session,
        entry_id: int,
        title: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        url: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> CredentialEntry:
        """Apply the given fields; a new password is re-encrypted with the session key."""
        entry = await self._get_owned(self.backend.credentials, session, entry_id)
        if title is not None:
            entry.title = _require_text(title, "Title")
        if username is not None:
            entry.username = _require_text(username, "Username")
        if password is not None:
            if not password:
                raise ValidationError("Password is required")
            entry.password_cipher = CipherService.encrypt(session.key, password)
        if url is not None:
            entry.url = normalize_url(url) or None
        if tags is not None:
            entry.tags = normalize_tags(tags)
        entry.updated_at = now_ms()
        await self.backend.credentials.put(entry)
        await self._index(entry)
        return entry

    async def reveal_secret(self, session: Session, entry_id: int) -> str:
        """
        Raises:
            ValidationError: Unknown entry
            DecryptionError: The stored blob does not decrypt with the session key
        """
        entry = await self._get_owned(self.backend.credentials, session, entry_id)
        secret = CipherService.decrypt(session.key, entry.password_cipher)
        self.audit.log_account_event(
            EventType.CREDENTIAL_ACCESSED, session.email, "credential revealed", details={"id": entry.id}
        )
        return secret

    async def list_credentials(self, session: Session, tags: Optional[Iterable[str]] = None) -> List[CredentialEntry]:
        entries = await self.backend.credentials.where("owner_email").equals(session.email).to_array()
        return _filter_by_tags(entries, tags)

    async def delete_credential(self, session: Session, entry_id: int) -> None:
        entry = await self._get_owned(self.backend.credentials, session, entry_id)
        await self.backend.credentials.delete(entry.id)
        await self.backend.search_index.delete_ref(session.email, SEARCH_KIND_PASSWORD, str(entry.id))
        self.audit.log_account_event(
            EventType.CREDENTIAL_DELETED, session.email, "credential deleted", details={"id": entry.id}
        )

    # Sites

    async def add_site(
        self,
        session: Session,
        title: str,
        url: str,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> SiteRecord:
        now = now_ms()
        site = SiteRecord(
            owner_email=session.email,
            title=_require_text(title, "Title"),
            url=normalize_url(_require_text(url, "URL")),
            description=_optional_text(description),
            tags=normalize_tags(tags or []),
            created_at=now,
            updated_at=now,
        )
        await self.backend.sites.add(site)
        await self._index(site)
        return site

    async def update_site(
        self,
        session: Session,
        site_id: int,
        title: Optional[str] = None,
        url: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> SiteRecord:
        site = await self._get_owned(self.backend.sites, session, site_id)
        if title is not None:
            site.title = _require_text(title, "Title")
        if url is not None:
            site.url = normalize_url(_require_text(url, "URL"))
        if description is not None:
            site.description = _optional_text(description)
        if tags is not None:
            site.tags = normalize_tags(tags)
        site.updated_at = now_ms()
        await self.backend.sites.put(site)
        await self._index(site)
        return site

    async def list_sites(self, session: Session, tags: Optional[Iterable[str]] = None) -> List[SiteRecord]:
        sites = await self.backend.sites.where("owner_email").equals(session.email).to_array()
        return _filter_by_tags(sites, tags)

    async def delete_site(self, session: Session, site_id: int) -> None:
        site = await self._get_owned(self.backend.sites, session, site_id)
        await self.backend.sites.delete(site.id)
        await self.backend.search_index.delete_ref(session.email, SEARCH_KIND_SITE, str(site.id))

    # Documents

    async def add_document(
        self,
        session: Session,
        title: str,
        description: Optional[str] = None,
        file_bytes: Optional[bytes] = None,
        file_name: Optional[str] = None,
        mime: Optional[str] = None,
        link_url: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> DocumentRecord:
        """
        Store a document with a file, a link, or both.

        Raises:
            ValidationError: Missing title, or neither a file nor a link
            StorageError: The attachment could not be written
        """
        title = _require_text(title, "Title")
        link = normalize_url(link_url)
        if file_bytes is None and not link:
            raise ValidationError("A document needs a file, a link, or both")

        file_meta = None
        if file_bytes is not None:
            file_meta = await self.vault.import_file(file_bytes, file_name or title, mime)

        now = now_ms()
        doc = DocumentRecord(
            owner_email=session.email,
            title=title,
            description=_optional_text(description),
            document=DocumentPayload.build(file=file_meta, link=LinkMeta(url=link) if link else None),
            tags=normalize_tags(tags or []),
            created_at=now,
            updated_at=now,
        )
        await self.backend.documents.add(doc)
        await self._index(doc)
        self.audit.log_account_event(
            EventType.DOCUMENT_ADDED, session.email, "document added",
            details={"id": doc.id, "kind": doc.document.kind},
        )
        return doc

    async def get_document(self, session: Session, doc_id: int) -> DocumentRecord:
        return await self._get_owned(self.backend.documents, session, doc_id)

    async def list_documents(self, session: Session, tags: Optional[Iterable[str]] = None) -> List[DocumentRecord]:
        docs = await self.backend.documents.where("owner_email").equals(session.email).to_array()
        return _filter_by_tags(docs, tags)

    async def delete_document(self, session: Session, doc_id: int) -> None:
        """Delete the record; its blob goes too unless another document still uses it."""
        doc = await self._get_owned(self.backend.documents, session, doc_id)
        await self.backend.documents.delete(doc.id)
        await self.backend.search_index.delete_ref(session.email, SEARCH_KIND_DOC, str(doc.id))

        rel_path = doc.file_path
        if rel_path:
            if await self.backend.documents.file_in_use(rel_path):
                logger.debug(f"Attachment {rel_path} still referenced; keeping it")
            else:
                await self.vault.remove_file(rel_path)

        self.audit.log_account_event(
            EventType.DOCUMENT_DELETED, session.email, "document deleted", details={"id": doc.id}
        )

    async def open_document(self, session: Session, doc_id: int) -> None:
        doc = await self._get_owned(self.backend.documents, session, doc_id)
        await self.vault.open_document(doc.document)

    # Backup

    async def export_backup(self, session: Session) -> str:
        """
        Encrypted backup of every record the account owns.

        Returns:
            Cipher blob (see vault/backup.py) readable only with the session key

        Raises:
            DecryptionError: A credential does not decrypt with the session key
        """
        entries = await self.list_credentials(session)
        credentials = []
        for entry in entries:
            try:
                credentials.append((entry, CipherService.decrypt(session.key, entry.password_cipher)))
            except DecryptionError as e:
                logger.error(f"Credential {entry.id} of {session.email} does not decrypt; backup aborted")
                raise DecryptionError(f"Credential {entry.id} could not be decrypted") from e

        sites = await self.list_sites(session)
        documents = await self.list_documents(session)
        blob = CipherService.encrypt(
            session.key, dump_backup_payload(session.email, credentials, sites, documents)
        )
        self.audit.log_account_event(
            EventType.BACKUP_EXPORTED, session.email, "backup exported",
            details={"credentials": len(credentials), "sites": len(sites), "documents": len(documents)},
        )
        return blob

    async def import_backup(self, session: Session, blob: str) -> BackupSummary:
        """
        Replace the account's records with the contents of a backup.

        The backup is decrypted and validated before anything is written;
        the old rows go and the new ones land in one transaction.

        Raises:
            ValidationError: Empty blob, bad payload, unsupported version or
                another account's backup
            DecryptionError: The blob does not decrypt with the session key
        """
        if not isinstance(blob, str) or not blob.strip():
            raise ValidationError("Backup data is required")
        try:
            text = CipherService.decrypt(session.key, blob.strip())
        except DecryptionError as e:
            raise DecryptionError("Backup could not be decrypted with this account's key") from e
        contents = load_backup_payload(text, session.email)

        for entry, secret in contents.credentials:
            entry.password_cipher = CipherService.encrypt(session.key, secret)

        old_credentials = await self.list_credentials(session)
        old_sites = await self.list_sites(session)
        old_documents = await self.list_documents(session)
        old_index = await self.backend.search_index.where("owner_email").equals(session.email).to_array()

        async with self.backend.transaction():
            for entry in old_credentials:
                await self.backend.credentials.delete(entry.id)
            for site in old_sites:
                await self.backend.sites.delete(site.id)
            for doc in old_documents:
                await self.backend.documents.delete(doc.id)
            for row in old_index:
                await self.backend.search_index.delete(row.id)

            for entry, _ in contents.credentials:
                await self.backend.credentials.add(entry)
                await self._index(entry)
            for site in contents.sites:
                await self.backend.sites.add(site)
                await self._index(site)
            for doc in contents.documents:
                await self.backend.documents.add(doc)
                await self._index(doc)

        for rel_path in sorted({doc.file_path for doc in old_documents if doc.file_path}):
            if not await self.backend.documents.file_in_use(rel_path):
                await self.vault.remove_file(rel_path)

        summary = BackupSummary(
            email=session.email,
            credentials=len(contents.credentials),
            sites=len(contents.sites),
            documents=len(contents.documents),
        )
        self.audit.log_account_event(
            EventType.BACKUP_IMPORTED, session.email, "backup imported", details=summary.to_dict()
        )
        logger.info(f"Backup imported for {session.email}: {summary.to_dict()}")
        return summary

    # Search

    async def search(
        self,
        session: Session,
        query: str,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> List[SearchIndexRecord]:
        entries = await self.backend.search_index.where("owner_email").equals(session.email).to_array()
        return search_entries(entries, query, limit)
