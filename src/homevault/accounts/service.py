# HomeVault - Account Lifecycle & Recovery
#
# Register / login / logout / restore, profile updates, password change,
# mnemonic-challenge recovery, account deletion and mnemonic reveal.
#
# Key rotation (password change and recovery) decrypts every credential
# with the old key first and aborts before any write if one fails; the
# re-encrypted rows and the account row are then persisted in a single
# backend transaction.
#
# The account row stores SHA-256(master key) as the verifier, and the master
# key wrapped under a key derived from the recovery phrase so recovery can
# re-encrypt existing credentials without the old password.

import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..config import DEFAULT_KDF_ITERATIONS
from ..core.audit_log import EventSeverity, EventType, get_audit_logger
from ..crypto.cipher import CipherService
from ..crypto.mnemonic import (
    DEFAULT_CHALLENGE_SIZE,
    generate_mnemonic_words,
    normalize_mnemonic,
    normalize_mnemonic_word,
    pick_challenge_positions,
)
from ..errors import AuthError, DecryptionError, RecoveryError, ValidationError
from ..health.strength import PASSWORD_STRENGTH_REQUIREMENT, estimate_password_strength
from ..storage.base import StorageBackend
from ..storage.models import Account, AvatarMeta, CredentialEntry, fallback_display_name, now_ms
from ..vault.attachments import AttachmentVault
from .session import Session, SessionStore

logger = logging.getLogger(__name__)

MIN_DISPLAY_NAME_LENGTH = 2
MAX_DISPLAY_NAME_LENGTH = 30
MAX_AVATAR_SIZE = 2 * 1024 * 1024  # 2 MB


@dataclass
class RegistrationResult:
    session: Session
    mnemonic_words: List[str]


@dataclass
class RecoveryChallenge:
    """Zero-based word positions the user must supply for an account."""
    email: str
    positions: List[int]


def normalize_email(raw: Optional[str]) -> str:
    return (raw or "").strip().lower()


def normalize_display_name(value: Optional[str]) -> str:
    return " ".join((value or "").split())


def validate_new_password(password: Optional[str]) -> None:
    """Raise ValidationError unless the password meets the strength requirement."""
    if not password:
        raise ValidationError("Password is required")
    strength = estimate_password_strength(password)
    if not strength.meets_requirement:
        raise ValidationError(strength.suggestions[0] if strength.suggestions else PASSWORD_STRENGTH_REQUIREMENT)


def validate_avatar(avatar: Optional[AvatarMeta]) -> Optional[AvatarMeta]:
    if avatar is None:
        return None
    if not isinstance(avatar.data_url, str) or not avatar.data_url.startswith("data:image/"):
        raise ValidationError("Avatar must be an image data URL")
    if avatar.size <= 0:
        raise ValidationError("Avatar data is empty")
    if avatar.size > MAX_AVATAR_SIZE:
        raise ValidationError("Avatar must be smaller than 2 MB")
    if avatar.width <= 0 or avatar.height <= 0:
        raise ValidationError("Avatar dimensions are invalid")
    if not avatar.mime:
        avatar.mime = "image/png"
    return avatar


class AccountService:
    """
    Account lifecycle over a storage backend.

    Every method either completes or raises a typed error
    (ValidationError, AuthError, DecryptionError, RecoveryError,
    StorageError). Validation and authentication happen before any write.

    Usage:
        accounts = AccountService(backend, vault, SessionStore(settings.session_path))
        result = await accounts.register("me@example.com", "correct horse Battery 9")
        session = await accounts.login("me@example.com", "correct horse Battery 9")
    """

    def __init__(
        self,
        backend: StorageBackend,
        vault: AttachmentVault,
        session_store: Optional[SessionStore] = None,
        kdf_iterations: int = DEFAULT_KDF_ITERATIONS,
    ):
        self.backend = backend
        self.vault = vault
        self.session_store = session_store
        self.kdf_iterations = kdf_iterations
        self.audit = get_audit_logger()
        # Outstanding recovery challenges: email -> issued positions
        self._challenges: Dict[str, Tuple[int, ...]] = {}

    # Key helpers

    async def _derive(self, secret: str, salt_b64: str) -> bytes:
        salt = CipherService.decode_from_storage(salt_b64)
        return await asyncio.to_thread(CipherService.derive_key, secret, salt, self.kdf_iterations)

    async def _mnemonic_key(self, mnemonic: str, salt_b64: str) -> bytes:
        return await self._derive(normalize_mnemonic(mnemonic), salt_b64)

    async def _wrap_for_recovery(self, account: Account, key: bytes) -> Optional[str]:
        if not normalize_mnemonic(account.mnemonic):
            return None
        wrapping_key = await self._mnemonic_key(account.mnemonic, account.salt)
        return CipherService.wrap_key(wrapping_key, key)

    async def _get_account(self, email: str) -> Optional[Account]:
        return await self.backend.users.get(email)

    async def _verify_password(self, account: Account, password: str) -> bytes:
        key = await self._derive(password, account.salt)
        if CipherService.hash_key(key) != account.key_hash:
            raise AuthError("Incorrect password")
        return key

    async def _require_account(self, session: Session) -> Account:
        """The session's account, provided the session key is still current."""
        if session is None:
            raise AuthError("Not logged in")
        account = await self._get_account(session.email)
        if account is None:
            raise AuthError("Account no longer exists")
        if CipherService.hash_key(session.key) != account.key_hash:
            raise AuthError("Session is no longer valid; log in again")
        return account

    def _persist_session(self, session: Session) -> None:
        if self.session_store is not None:
            self.session_store.save(session)

    def _clear_session(self) -> None:
        if self.session_store is not None:
            self.session_store.clear()

    # Registration & login

    async def register(self, email: str, password: str) -> RegistrationResult:
        """
        Create an account and log it in.

        Returns:
            RegistrationResult with the new session and the recovery words
            (shown to the user once)

        Raises:
            ValidationError: Missing email, weak password or existing account
        """
        email = normalize_email(email)
        if not email:
            raise ValidationError("Email is required")
        validate_new_password(password)
        if await self._get_account(email) is not None:
            raise ValidationError("An account with this email already exists")

        salt = CipherService.encode_for_storage(CipherService.generate_salt())
        key = await self._derive(password, salt)
        words = generate_mnemonic_words()
        now = now_ms()
        account = Account(
            email=email,
            salt=salt,
            key_hash=CipherService.hash_key(key),
            display_name=fallback_display_name(email),
            mnemonic=" ".join(words),
            must_change_password=True,
            created_at=now,
            updated_at=now,
        )
        account.recovery_cipher = await self._wrap_for_recovery(account, key)
        await self.backend.users.put(account)

        session = Session(email=email, key=key, must_change_password=True)
        self._persist_session(session)
        self.audit.log_account_event(EventType.ACCOUNT_REGISTERED, email, "registered")
        logger.info(f"Account registered: {email}")
        return RegistrationResult(session=session, mnemonic_words=words)

    async def login(self, email: str, password: str) -> Session:
        """
        Raises:
            ValidationError: Missing email or password
            AuthError: Unknown account or wrong password
        """
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password are required")

        account = await self._get_account(email)
        if account is None:
            self.audit.log_account_event(
                EventType.ACCOUNT_LOGIN_FAILED, email, "login for unknown account",
                severity=EventSeverity.INVESTIGATE,
            )
            raise AuthError("Account does not exist")
        try:
            key = await self._verify_password(account, password)
        except AuthError:
            self.audit.log_account_event(
                EventType.ACCOUNT_LOGIN_FAILED, email, "wrong password",
                severity=EventSeverity.INVESTIGATE,
            )
            raise

        if not account.recovery_cipher and account.mnemonic:
            # Accounts created before the recovery wrap existed get one now
            account.recovery_cipher = await self._wrap_for_recovery(account, key)
            await self.backend.users.put(account)
            logger.info(f"Recovery key wrap added for {email}")

        session = Session(email=email, key=key, must_change_password=account.must_change_password)
        self._persist_session(session)
        self.audit.log_account_event(EventType.ACCOUNT_LOGIN, email, "logged in")
        return session

    async def logout(self, session: Optional[Session]) -> None:
        self._clear_session()
        if session is not None:
            self.audit.log_account_event(EventType.ACCOUNT_LOGOUT, session.email, "logged out")

    async def restore_session(self) -> Optional[Session]:
        """Session persisted by a previous run, if its account and key are still valid."""
        if self.session_store is None:
            return None
        stored = self.session_store.load()
        if stored is None:
            return None
        email, key = stored
        account = await self._get_account(email)
        if account is None or CipherService.hash_key(key) != account.key_hash:
            logger.info("Discarding persisted session that no longer matches an account")
            self._clear_session()
            return None
        return Session(email=email, key=key, must_change_password=account.must_change_password)

    # Profile

    async def get_profile(self, session: Session) -> Account:
        return await self._require_account(session)

    async def update_profile(
        self,
        session: Session,
        display_name: str,
        avatar: Optional[AvatarMeta] = None,
    ) -> Account:
        """
        Raises:
            ValidationError: Display name not 2-30 characters, or bad avatar
        """
        name = normalize_display_name(display_name)
        if not name:
            raise ValidationError("Display name is required")
        if len(name) < MIN_DISPLAY_NAME_LENGTH:
            raise ValidationError(f"Display name needs at least {MIN_DISPLAY_NAME_LENGTH} characters")
        if len(name) > MAX_DISPLAY_NAME_LENGTH:
            raise ValidationError(f"Display name can have at most {MAX_DISPLAY_NAME_LENGTH} characters")
        avatar = validate_avatar(avatar)

        account = await self._require_account(session)
        account.display_name = name
        account.avatar = avatar
        account.updated_at = now_ms()
        await self.backend.users.put(account)
        self.audit.log_account_event(EventType.ACCOUNT_PROFILE_UPDATED, account.email, "profile updated")
        return account

    # Key rotation

    async def _decrypt_all(self, email: str, key: bytes) -> List[Tuple[CredentialEntry, str]]:
        entries = await self.backend.credentials.where("owner_email").equals(email).to_array()
        decrypted = []
        for entry in entries:
            if entry.id is None:
                raise DecryptionError("Credential without an id; refusing to re-encrypt")
            try:
                decrypted.append((entry, CipherService.decrypt(key, entry.password_cipher)))
            except DecryptionError as e:
                logger.error(f"Credential {entry.id} of {email} does not decrypt; aborting key rotation")
                raise DecryptionError(f"Credential {entry.id} could not be decrypted") from e
        return decrypted

    async def _rotate_key(self, account: Account, old_key: bytes, new_password: str) -> bytes:
        """Re-key the account; every credential is re-encrypted under the new key."""
        decrypted = await self._decrypt_all(account.email, old_key)

        new_salt = CipherService.encode_for_storage(CipherService.generate_salt())
        new_key = await self._derive(new_password, new_salt)
        now = now_ms()

        for entry, plaintext in decrypted:
            entry.password_cipher = CipherService.encrypt(new_key, plaintext)
            entry.updated_at = now

        account.salt = new_salt
        account.key_hash = CipherService.hash_key(new_key)
        account.must_change_password = False
        account.updated_at = now
        account.recovery_cipher = await self._wrap_for_recovery(account, new_key)

        async with self.backend.transaction():
            for entry, _ in decrypted:
                await self.backend.credentials.put(entry)
            await self.backend.users.put(account)

        logger.info(f"Re-encrypted {len(decrypted)} credentials for {account.email}")
        return new_key

    async def change_password(self, session: Session, current_password: str, new_password: str) -> Session:
        """
        Returns:
            The refreshed session carrying the new key

        Raises:
            ValidationError: Missing/weak new password, or equal to the current one
            AuthError: Wrong current password
            DecryptionError: A credential does not decrypt (nothing was written)
        """
        if not current_password:
            raise ValidationError("Current password is required")
        validate_new_password(new_password)
        if new_password == current_password:
            raise ValidationError("New password must differ from the current one")

        account = await self._require_account(session)
        try:
            old_key = await self._verify_password(account, current_password)
        except AuthError:
            self.audit.log_account_event(
                EventType.PASSWORD_CHANGE_FAILED, account.email, "wrong current password",
                severity=EventSeverity.INVESTIGATE,
            )
            raise

        new_key = await self._rotate_key(account, old_key, new_password)
        refreshed = Session(email=account.email, key=new_key, must_change_password=False)
        self._persist_session(refreshed)
        self.audit.log_account_event(EventType.PASSWORD_CHANGED, account.email, "password changed")
        return refreshed

    # Recovery

    async def create_recovery_challenge(self, email: str) -> RecoveryChallenge:
        """
        Issue a challenge of DEFAULT_CHALLENGE_SIZE random word positions.

        A new challenge replaces any outstanding one for the same account.

        Raises:
            RecoveryError: Unknown account or no recovery phrase on file
        """
        email = normalize_email(email)
        account = await self._get_account(email) if email else None
        if account is None:
            raise RecoveryError("Account does not exist or the recovery phrase does not match")
        words = normalize_mnemonic(account.mnemonic).split()
        if not words:
            raise RecoveryError("This account has no recovery phrase")
        positions = pick_challenge_positions(len(words), DEFAULT_CHALLENGE_SIZE)
        self._challenges[email] = tuple(positions)
        return RecoveryChallenge(email=email, positions=positions)

    def _take_challenge(self, challenge: RecoveryChallenge) -> Tuple[str, Tuple[int, ...]]:
        """Consume the issued challenge; only positions this service picked are accepted."""
        email = normalize_email(challenge.email if challenge is not None else None)
        issued = self._challenges.pop(email, None) if email else None
        if issued is None:
            self._recovery_failed(email, "no outstanding recovery challenge")
            raise RecoveryError("Request a recovery challenge first")
        try:
            presented = tuple(sorted(int(p) for p in challenge.positions))
        except (TypeError, ValueError) as e:
            raise RecoveryError("Invalid recovery challenge") from e
        if presented != issued:
            self._recovery_failed(email, "challenge does not match the one issued")
            raise RecoveryError("Recovery challenge does not match; request a new one")
        return email, issued

    async def recover_password(
        self,
        challenge: RecoveryChallenge,
        answers: Dict[int, str],
        new_password: str,
    ) -> Session:
        """
        Reset a forgotten password by answering a mnemonic challenge.

        The challenge must be the one create_recovery_challenge() issued for
        the account. Every attempt past password validation consumes it,
        so a failed answer needs a fresh challenge.

        Args:
            challenge: From create_recovery_challenge()
            answers: Position -> word, for exactly the challenged positions
            new_password: Replacement password

        Returns:
            A new session for the recovered account

        Raises:
            ValidationError: Weak new password or equal to the old one
            RecoveryError: Unknown or forged challenge, missing/extra answers,
                a wrong word, or no recovery key
            DecryptionError: A credential does not decrypt (nothing was written)
        """
        validate_new_password(new_password)
        email, expected = self._take_challenge(challenge)

        normalized = {}
        for position, word in (answers or {}).items():
            try:
                index = int(position)
            except (TypeError, ValueError) as e:
                self._recovery_failed(email, "malformed answer position")
                raise RecoveryError(f"Invalid word position: {position!r}") from e
            normalized[index] = normalize_mnemonic_word(word if isinstance(word, str) else "")

        account = await self._get_account(email)
        if account is None:
            raise RecoveryError("Account does not exist or the recovery phrase does not match")
        stored_words = normalize_mnemonic(account.mnemonic).split()
        if not stored_words:
            raise RecoveryError("This account has no recovery phrase")

        if set(normalized) != set(expected):
            self._recovery_failed(email, "answers do not cover the challenged positions")
            raise RecoveryError("Every challenged word must be answered")
        for index in expected:
            if index >= len(stored_words) or normalized[index] != stored_words[index]:
                self._recovery_failed(email, "recovery word mismatch")
                raise RecoveryError("The recovery phrase does not match")

        if not account.recovery_cipher:
            self._recovery_failed(email, "no recovery key wrap on file")
            raise RecoveryError("Log in once with the current password to enable recovery")

        try:
            wrapping_key = await self._mnemonic_key(account.mnemonic, account.salt)
            old_key = CipherService.unwrap_key(wrapping_key, account.recovery_cipher)
        except DecryptionError as e:
            self._recovery_failed(email, "recovery key did not unwrap")
            raise RecoveryError("Recovery key could not be unlocked") from e

        candidate = await self._derive(new_password, account.salt)
        if CipherService.hash_key(candidate) == account.key_hash:
            raise ValidationError("New password must differ from the current one")

        new_key = await self._rotate_key(account, old_key, new_password)
        session = Session(email=email, key=new_key, must_change_password=False)
        self._persist_session(session)
        self.audit.log_account_event(EventType.PASSWORD_RECOVERED, email, "password reset via recovery phrase")
        return session

    def _recovery_failed(self, email: str, reason: str) -> None:
        self.audit.log_account_event(
            EventType.RECOVERY_FAILED, email, reason, severity=EventSeverity.INVESTIGATE
        )

    # Deletion & mnemonic

    async def delete_account(self, session: Session, password: str) -> None:
        """
        Delete the account and everything it owns.

        Rows go in one transaction; attachment blobs no other account
        references are removed afterwards and failures there are only logged.

        Raises:
            ValidationError: Missing password
            AuthError: Wrong password
        """
        if not password:
            raise ValidationError("Password is required")
        account = await self._require_account(session)
        await self._verify_password(account, password)
        email = account.email

        credentials = await self.backend.credentials.where("owner_email").equals(email).to_array()
        sites = await self.backend.sites.where("owner_email").equals(email).to_array()
        documents = await self.backend.documents.where("owner_email").equals(email).to_array()
        index_rows = await self.backend.search_index.where("owner_email").equals(email).to_array()
        file_paths = {doc.file_path for doc in documents if doc.file_path}

        async with self.backend.transaction():
            for entry in credentials:
                await self.backend.credentials.delete(entry.id)
            for site in sites:
                await self.backend.sites.delete(site.id)
            for doc in documents:
                await self.backend.documents.delete(doc.id)
            for row in index_rows:
                await self.backend.search_index.delete(row.id)
            await self.backend.users.delete(email)

        self._challenges.pop(email, None)
        for rel_path in sorted(file_paths):
            if await self.backend.documents.file_in_use(rel_path):
                logger.debug(f"Attachment {rel_path} is shared with another account; keeping it")
                continue
            await self.vault.remove_file(rel_path)

        self._clear_session()
        self.audit.log_account_event(
            EventType.ACCOUNT_DELETED, email, "account deleted",
            severity=EventSeverity.ALERT,
            details={"credentials": len(credentials), "sites": len(sites), "documents": len(documents)},
        )
        logger.info(f"Account deleted: {email}")

    async def reveal_mnemonic(self, session: Session, password: str) -> List[str]:
        """
        Raises:
            ValidationError: Missing password
            AuthError: Wrong password
            RecoveryError: No phrase on file
        """
        if not (password or "").strip():
            raise ValidationError("Password is required")
        account = await self._require_account(session)
        await self._verify_password(account, password)
        words = normalize_mnemonic(account.mnemonic).split()
        if not words:
            raise RecoveryError("No recovery phrase has been generated for this account")
        self.audit.log_account_event(EventType.MNEMONIC_REVEALED, account.email, "recovery phrase revealed")
        return words
