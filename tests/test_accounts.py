"""Tests for the account lifecycle: register, login, password change, recovery, deletion."""

import pytest

from homevault.accounts import AccountService, RecoveryChallenge, SessionStore
from homevault.crypto import CipherService, decrypt
from homevault.errors import AuthError, DecryptionError, RecoveryError, ValidationError
from homevault.storage import AvatarMeta

STRONG_PASSWORD = "Correct-Horse-Battery-9"
NEW_PASSWORD = "Brand-New-Secret-42x"


async def _words(accounts, session):
    return await accounts.reveal_mnemonic(session, STRONG_PASSWORD)


def _answers(words, positions):
    return {position: words[position] for position in positions}


# ── Registration & login ─────────────────────────────────────────────

class TestRegisterLogin:
    @pytest.mark.asyncio
    async def test_register_then_login(self, accounts, backend):
        result = await accounts.register("  Alice@Example.com ", STRONG_PASSWORD)

        assert result.session.email == "alice@example.com"
        assert result.session.must_change_password is True
        assert len(result.mnemonic_words) == 12

        account = await backend.users.get("alice@example.com")
        assert account.display_name == "alice"
        assert account.mnemonic == " ".join(result.mnemonic_words)
        assert account.recovery_cipher
        assert account.key_hash == CipherService.hash_key(result.session.key)

        session = await accounts.login("ALICE@example.com", STRONG_PASSWORD)
        assert session.key == result.session.key
        assert session.must_change_password is True

    @pytest.mark.asyncio
    async def test_register_login_end_to_end(self, accounts):
        result = await accounts.register("a@x.com", "Str0ng!Pass")
        assert len(result.mnemonic_words) == 12

        session = await accounts.login("a@x.com", "Str0ng!Pass")
        assert session.email == "a@x.com"
        with pytest.raises(AuthError):
            await accounts.login("a@x.com", "wrong")

    @pytest.mark.asyncio
    async def test_wrong_password(self, accounts, session):
        with pytest.raises(AuthError):
            await accounts.login("alice@example.com", "Wrong-Password-123")

    @pytest.mark.asyncio
    async def test_unknown_account(self, accounts):
        with pytest.raises(AuthError):
            await accounts.login("nobody@example.com", STRONG_PASSWORD)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,password", [("", STRONG_PASSWORD), ("a@example.com", "")])
    async def test_login_requires_both_fields(self, accounts, email, password):
        with pytest.raises(ValidationError):
            await accounts.login(email, password)

    @pytest.mark.asyncio
    async def test_weak_password_rejected(self, accounts, backend):
        with pytest.raises(ValidationError):
            await accounts.register("bob@example.com", "hunter2")
        assert await backend.users.get("bob@example.com") is None

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, accounts, session):
        with pytest.raises(ValidationError):
            await accounts.register("ALICE@example.com", STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_login_adds_missing_recovery_wrap(self, accounts, backend, session):
        account = await backend.users.get("alice@example.com")
        account.recovery_cipher = None
        await backend.users.put(account)

        await accounts.login("alice@example.com", STRONG_PASSWORD)
        assert (await backend.users.get("alice@example.com")).recovery_cipher


class TestSessionPersistence:
    @pytest.mark.asyncio
    async def test_restore_after_restart(self, accounts, backend, vault, session_store, session):
        restarted = AccountService(backend, vault, SessionStore(session_store.path), kdf_iterations=1000)
        restored = await restarted.restore_session()
        assert restored.email == session.email
        assert restored.key == session.key

    @pytest.mark.asyncio
    async def test_logout_clears_persisted_session(self, accounts, session_store, session):
        await accounts.logout(session)
        assert session_store.load() is None
        assert await accounts.restore_session() is None

    @pytest.mark.asyncio
    async def test_stale_persisted_key_discarded(self, accounts, session_store, session):
        await accounts.change_password(session, STRONG_PASSWORD, NEW_PASSWORD)
        session_store.save(session)  # the pre-change key

        assert await accounts.restore_session() is None
        assert session_store.load() is None


class TestProfile:
    @pytest.mark.asyncio
    async def test_update_display_name_and_avatar(self, accounts, session):
        avatar = AvatarMeta(data_url="data:image/png;base64,AAAA", size=3, width=64, height=64)
        account = await accounts.update_profile(session, "  Alice   Liddell ", avatar)
        assert account.display_name == "Alice Liddell"
        assert (await accounts.get_profile(session)).avatar.data_url == avatar.data_url

    @pytest.mark.asyncio
    @pytest.mark.parametrize("name", ["", "A", "x" * 31])
    async def test_display_name_length(self, accounts, session, name):
        with pytest.raises(ValidationError):
            await accounts.update_profile(session, name)

    @pytest.mark.asyncio
    async def test_avatar_validation(self, accounts, session):
        with pytest.raises(ValidationError):
            await accounts.update_profile(
                session, "Alice", AvatarMeta(data_url="https://example.com/a.png", size=3, width=1, height=1)
            )
        with pytest.raises(ValidationError):
            await accounts.update_profile(
                session, "Alice",
                AvatarMeta(data_url="data:image/png;base64,AA", size=3 * 1024 * 1024, width=1, height=1),
            )


# ── Password change ──────────────────────────────────────────────────

class TestChangePassword:
    @pytest.mark.asyncio
    async def test_reencrypts_every_credential(self, accounts, items, backend, session):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        await items.add_credential(session, "Mail", "me", "mail-secret")

        refreshed = await accounts.change_password(session, STRONG_PASSWORD, NEW_PASSWORD)

        assert refreshed.key != session.key
        assert refreshed.must_change_password is False
        entries = await backend.credentials.where("owner_email").equals(session.email).to_array()
        assert sorted(decrypt(refreshed.key, e.password_cipher) for e in entries) == ["bank-secret", "mail-secret"]

        with pytest.raises(AuthError):
            await accounts.login("alice@example.com", STRONG_PASSWORD)
        relogin = await accounts.login("alice@example.com", NEW_PASSWORD)
        assert relogin.key == refreshed.key
        assert relogin.must_change_password is False

    @pytest.mark.asyncio
    async def test_wrong_current_password(self, accounts, session):
        with pytest.raises(AuthError):
            await accounts.change_password(session, "Not-The-Password-1", NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_same_or_weak_new_password(self, accounts, session):
        with pytest.raises(ValidationError):
            await accounts.change_password(session, STRONG_PASSWORD, STRONG_PASSWORD)
        with pytest.raises(ValidationError):
            await accounts.change_password(session, STRONG_PASSWORD, "hunter2")

    @pytest.mark.asyncio
    async def test_corrupt_entry_aborts_without_writes(self, accounts, items, backend, session):
        good = await items.add_credential(session, "Bank", "me", "bank-secret")
        bad = await items.add_credential(session, "Broken", "me", "whatever")
        bad.password_cipher = CipherService.encrypt(bytes(32), "not under the master key")
        await backend.credentials.put(bad)
        account_before = await backend.users.get(session.email)
        good_before = await backend.credentials.get(good.id)

        with pytest.raises(DecryptionError):
            await accounts.change_password(session, STRONG_PASSWORD, NEW_PASSWORD)

        assert await backend.users.get(session.email) == account_before
        assert await backend.credentials.get(good.id) == good_before
        assert (await accounts.login("alice@example.com", STRONG_PASSWORD)).key == session.key

    @pytest.mark.asyncio
    async def test_old_session_invalid_after_change(self, accounts, session):
        await accounts.change_password(session, STRONG_PASSWORD, NEW_PASSWORD)
        with pytest.raises(AuthError):
            await accounts.get_profile(session)


# ── Recovery ─────────────────────────────────────────────────────────

class TestRecovery:
    @pytest.mark.asyncio
    async def test_challenge_positions(self, accounts, session):
        challenge = await accounts.create_recovery_challenge("Alice@example.com")
        assert challenge.email == "alice@example.com"
        assert len(challenge.positions) == 3
        assert all(0 <= p < 12 for p in challenge.positions)

    @pytest.mark.asyncio
    async def test_unknown_account_challenge(self, accounts):
        with pytest.raises(RecoveryError):
            await accounts.create_recovery_challenge("nobody@example.com")

    @pytest.mark.asyncio
    async def test_recover_keeps_credentials_readable(self, accounts, items, session):
        entry = await items.add_credential(session, "Bank", "me", "bank-secret")
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        answers = {p: f"  {words[p].upper()} " for p in challenge.positions}

        recovered = await accounts.recover_password(challenge, answers, NEW_PASSWORD)

        assert await items.reveal_secret(recovered, entry.id) == "bank-secret"
        assert (await accounts.login("alice@example.com", NEW_PASSWORD)).key == recovered.key
        with pytest.raises(AuthError):
            await accounts.login("alice@example.com", STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_single_mismatch_fails(self, accounts, backend, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        answers = _answers(words, challenge.positions)
        wrong_position = challenge.positions[-1]
        answers[wrong_position] = "definitely-not-a-word"
        before = await backend.users.get("alice@example.com")

        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, answers, NEW_PASSWORD)
        assert await backend.users.get("alice@example.com") == before

    @pytest.mark.asyncio
    async def test_every_position_required(self, accounts, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        answers = _answers(words, challenge.positions[:-1])
        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, answers, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_extra_positions_rejected(self, accounts, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        extra = next(p for p in range(12) if p not in challenge.positions)
        answers = _answers(words, challenge.positions + [extra])
        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, answers, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_forged_challenge_rejected(self, accounts, backend, session):
        words = await _words(accounts, session)
        await accounts.create_recovery_challenge("alice@example.com")
        forged = RecoveryChallenge("alice@example.com", [0])
        before = await backend.users.get("alice@example.com")

        with pytest.raises(RecoveryError):
            await accounts.recover_password(forged, {0: words[0]}, NEW_PASSWORD)
        assert await backend.users.get("alice@example.com") == before

    @pytest.mark.asyncio
    async def test_challenge_never_issued(self, accounts, session):
        words = await _words(accounts, session)
        challenge = RecoveryChallenge("alice@example.com", [0, 1, 2])
        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, _answers(words, [0, 1, 2]), NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_retry_after_failure_needs_new_challenge(self, accounts, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        wrong = _answers(words, challenge.positions)
        wrong[challenge.positions[0]] = "definitely-not-a-word"

        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, wrong, NEW_PASSWORD)
        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, _answers(words, challenge.positions), NEW_PASSWORD)

        fresh = await accounts.create_recovery_challenge("alice@example.com")
        recovered = await accounts.recover_password(fresh, _answers(words, fresh.positions), NEW_PASSWORD)
        assert recovered.email == "alice@example.com"

    @pytest.mark.asyncio
    async def test_positions_beyond_stored_phrase(self, accounts, backend, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        account = await backend.users.get("alice@example.com")
        account.mnemonic = " ".join(words[:max(challenge.positions)])
        await backend.users.put(account)

        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, _answers(words, challenge.positions), NEW_PASSWORD)
        assert (await accounts.login("alice@example.com", STRONG_PASSWORD)).key == session.key

    @pytest.mark.asyncio
    async def test_missing_recovery_wrap(self, accounts, backend, session):
        words = await _words(accounts, session)
        account = await backend.users.get("alice@example.com")
        account.recovery_cipher = None
        await backend.users.put(account)
        challenge = await accounts.create_recovery_challenge("alice@example.com")

        with pytest.raises(RecoveryError):
            await accounts.recover_password(challenge, _answers(words, challenge.positions), NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_new_password_must_differ(self, accounts, session):
        words = await _words(accounts, session)
        challenge = await accounts.create_recovery_challenge("alice@example.com")
        with pytest.raises(ValidationError):
            await accounts.recover_password(challenge, _answers(words, challenge.positions), STRONG_PASSWORD)


# ── Deletion & mnemonic reveal ───────────────────────────────────────

class TestDeleteAccount:
    @pytest.mark.asyncio
    async def test_cascades_everything(self, accounts, items, backend, vault, session_store, session):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        await items.add_site(session, "Docs", "docs.example.com")
        doc = await items.add_document(session, "Passport", file_bytes=b"scan", file_name="p.pdf")
        blob = vault.resolve_path(doc.file_path)
        assert blob.exists()

        await accounts.delete_account(session, STRONG_PASSWORD)

        assert await backend.users.get(session.email) is None
        for collection in (backend.credentials, backend.sites, backend.documents, backend.search_index):
            assert await collection.where("owner_email").equals(session.email).to_array() == []
        assert not blob.exists()
        assert session_store.load() is None

    @pytest.mark.asyncio
    async def test_wrong_password_deletes_nothing(self, accounts, items, backend, session):
        await items.add_credential(session, "Bank", "me", "bank-secret")
        with pytest.raises(AuthError):
            await accounts.delete_account(session, "Wrong-Password-123")
        assert await backend.users.get(session.email) is not None
        assert len(await items.list_credentials(session)) == 1

    @pytest.mark.asyncio
    async def test_other_accounts_untouched(self, accounts, items, backend, session):
        other = (await accounts.register("bob@example.com", NEW_PASSWORD)).session
        await items.add_credential(other, "Bob's bank", "bob", "bob-secret")

        await accounts.delete_account(session, STRONG_PASSWORD)

        assert await backend.users.get("bob@example.com") is not None
        assert len(await items.list_credentials(other)) == 1

    @pytest.mark.asyncio
    async def test_blob_shared_with_other_account_survives(self, accounts, items, vault, session):
        other = (await accounts.register("bob@example.com", NEW_PASSWORD)).session
        mine = await items.add_document(session, "Passport", file_bytes=b"family scan", file_name="p.pdf")
        theirs = await items.add_document(other, "Family", file_bytes=b"family scan", file_name="f.pdf")
        assert mine.file_path == theirs.file_path

        await accounts.delete_account(session, STRONG_PASSWORD)

        assert vault.resolve_path(theirs.file_path).exists()
        await items.open_document(other, theirs.id)


class TestRevealMnemonic:
    @pytest.mark.asyncio
    async def test_reveal(self, accounts, backend, session):
        words = await accounts.reveal_mnemonic(session, STRONG_PASSWORD)
        account = await backend.users.get(session.email)
        assert words == account.mnemonic_words

    @pytest.mark.asyncio
    async def test_wrong_or_missing_password(self, accounts, session):
        with pytest.raises(AuthError):
            await accounts.reveal_mnemonic(session, "Wrong-Password-123")
        with pytest.raises(ValidationError):
            await accounts.reveal_mnemonic(session, "   ")
