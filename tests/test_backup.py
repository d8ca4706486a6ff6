"""Tests for the encrypted per-account backup export and import."""

import json

import pytest

from homevault.accounts import Session
from homevault.crypto import CipherService, decrypt, encrypt
from homevault.errors import DecryptionError, ValidationError
from homevault.vault import BACKUP_VERSION


async def _seed(items, session):
    entry = await items.add_credential(session, "Bank", "me", "bank-secret", url="bank.example.com", tags=["money"])
    site = await items.add_site(session, "Recipes", "cooking.example.com", "Family dinners", tags=["home"])
    doc = await items.add_document(session, "Passport", file_bytes=b"scan", file_name="passport.pdf",
                                   link_url="https://gov.example.com")
    return entry, site, doc


def _payload(session, blob):
    return json.loads(decrypt(session.key, blob))


# ── Export ───────────────────────────────────────────────────────────

class TestExport:
    @pytest.mark.asyncio
    async def test_payload_is_encrypted_and_versioned(self, items, session):
        entry, site, doc = await _seed(items, session)

        blob = await items.export_backup(session)

        assert "bank-secret" not in blob
        payload = _payload(session, blob)
        assert payload["version"] == BACKUP_VERSION
        assert payload["email"] == "alice@example.com"
        assert payload["credentials"][0]["password"] == "bank-secret"
        assert payload["credentials"][0]["tags"] == ["money"]
        assert payload["sites"][0]["url"] == site.url
        assert payload["documents"][0]["document"] == doc.document.to_dict()

    @pytest.mark.asyncio
    async def test_other_key_cannot_read(self, items, session):
        await _seed(items, session)
        blob = await items.export_backup(session)
        with pytest.raises(DecryptionError):
            decrypt(bytes(32), blob)

    @pytest.mark.asyncio
    async def test_undecryptable_credential_aborts(self, items, backend, session):
        bad = await items.add_credential(session, "Broken", "me", "whatever")
        bad.password_cipher = CipherService.encrypt(bytes(32), "not under the master key")
        await backend.credentials.put(bad)

        with pytest.raises(DecryptionError):
            await items.export_backup(session)


# ── Import ───────────────────────────────────────────────────────────

class TestImport:
    @pytest.mark.asyncio
    async def test_restores_exported_records(self, items, vault, session):
        entry, site, doc = await _seed(items, session)
        blob = await items.export_backup(session)
        await items.delete_credential(session, entry.id)
        await items.delete_site(session, site.id)

        summary = await items.import_backup(session, blob)

        assert summary.to_dict() == {"email": "alice@example.com", "credentials": 1, "sites": 1, "documents": 1}
        [restored] = await items.list_credentials(session)
        assert restored.title == "Bank"
        assert restored.tags == ["money"]
        assert restored.created_at == entry.created_at
        assert await items.reveal_secret(session, restored.id) == "bank-secret"
        assert [s.title for s in await items.list_sites(session)] == ["Recipes"]
        [restored_doc] = await items.list_documents(session)
        assert restored_doc.file_path == doc.file_path
        assert vault.resolve_path(restored_doc.file_path).exists()
        assert [hit.title for hit in await items.search(session, "bank")] == ["Bank"]

    @pytest.mark.asyncio
    async def test_replaces_existing_records(self, items, session):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        blob = await items.export_backup(session)
        added_later = await items.add_credential(session, "Forum", "me", "forum-secret")

        await items.import_backup(session, blob)

        assert [e.title for e in await items.list_credentials(session)] == ["Bank"]
        assert await items.search(session, "forum") == []
        with pytest.raises(ValidationError):
            await items.reveal_secret(session, added_later.id)

    @pytest.mark.asyncio
    async def test_other_accounts_backup_rejected(self, items, session):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        foreign = json.dumps({"version": 1, "email": "mallory@example.com", "credentials": []})

        with pytest.raises(ValidationError):
            await items.import_backup(session, encrypt(session.key, foreign))
        assert len(await items.list_credentials(session)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("version", [0, BACKUP_VERSION + 1, "1", None])
    async def test_unsupported_version_rejected(self, items, session, version):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        payload = json.dumps({"version": version, "email": session.email, "credentials": []})

        with pytest.raises(ValidationError):
            await items.import_backup(session, encrypt(session.key, payload))
        assert len(await items.list_credentials(session)) == 1

    @pytest.mark.asyncio
    async def test_wrong_key_is_decryption_error(self, items, session):
        other = Session(email=session.email, key=bytes(32))
        blob = await items.export_backup(other)
        with pytest.raises(DecryptionError):
            await items.import_backup(session, blob)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("blob", ["", "   "])
    async def test_empty_blob(self, items, session, blob):
        with pytest.raises(ValidationError):
            await items.import_backup(session, blob)

    @pytest.mark.asyncio
    async def test_malformed_document_rejects_whole_backup(self, items, session):
        await items.add_site(session, "Recipes", "cooking.example.com")
        payload = json.dumps({
            "version": 1,
            "email": session.email,
            "sites": [],
            "documents": [{"title": "Broken", "document": {"kind": "file"}}],
        })

        with pytest.raises(ValidationError):
            await items.import_backup(session, encrypt(session.key, payload))
        assert [s.title for s in await items.list_sites(session)] == ["Recipes"]

    @pytest.mark.asyncio
    async def test_dropped_documents_release_their_blobs(self, items, vault, session):
        blob = await items.export_backup(session)
        doc = await items.add_document(session, "Scan", file_bytes=b"later", file_name="later.pdf")
        path = vault.resolve_path(doc.file_path)

        await items.import_backup(session, blob)

        assert await items.list_documents(session) == []
        assert not path.exists()
