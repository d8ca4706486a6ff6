# HomeVault - Cipher Service
#
# Master password → Encryption key (PBKDF2-HMAC-SHA256)
# Secret encryption (AES-256-GCM), one fresh nonce per call
# Cipher blob = base64(nonce || ciphertext || tag)

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import DecryptionError


class CipherService:
    """
    Key derivation and authenticated encryption for vault secrets.

    Flow:
    1. User enters master password
    2. PBKDF2 derives a 256-bit key from password + per-account salt
    3. AES-256-GCM encrypts/decrypts each secret
    4. Each secret has a unique nonce, so equal plaintexts never share
       ciphertext
    """

    # PBKDF2 parameters (OWASP recommendations)
    PBKDF2_ITERATIONS = 600_000  # OWASP 2023: 600k iterations for PBKDF2-SHA256
    KEY_LENGTH = 32  # 256 bits for AES-256
    SALT_LENGTH = 16  # 128-bit salt
    NONCE_LENGTH = 12  # 96-bit nonce for GCM (recommended)
    TAG_LENGTH = 16

    @staticmethod
    def derive_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
        """
        Derive encryption key from a password using PBKDF2.

        Identical (password, salt, iterations) always yield identical bytes.

        Args:
            password: Account password (or normalized recovery phrase)
            salt: Random per-account salt
            iterations: PBKDF2 work factor

        Returns:
            256-bit encryption key
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=CipherService.KEY_LENGTH,
            salt=salt,
            iterations=iterations,
            backend=default_backend()
        )

        return kdf.derive(password.encode('utf-8'))

    @staticmethod
    def generate_salt() -> bytes:
        """Generate cryptographically random salt."""
        return os.urandom(CipherService.SALT_LENGTH)

    @staticmethod
    def encrypt(key: bytes, plaintext: str) -> str:
        """
        Encrypt plaintext using AES-256-GCM.

        Args:
            key: 256-bit encryption key (from derive_key)
            plaintext: Secret to encrypt

        Returns:
            Opaque cipher blob (base64 of nonce, ciphertext and tag)
        """
        nonce = os.urandom(CipherService.NONCE_LENGTH)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
        return CipherService.encode_for_storage(nonce + ciphertext)

    @staticmethod
    def decrypt(key: bytes, blob: str) -> str:
        """
        Decrypt a cipher blob produced by encrypt().

        Args:
            key: 256-bit encryption key (same as encryption)
            blob: Cipher blob

        Returns:
            Decrypted plaintext

        Raises:
            DecryptionError: Wrong key, corrupted or malformed blob
        """
        try:
            return CipherService._open(key, blob).decode('utf-8')
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted payload is not UTF-8 text") from e

    @staticmethod
    def wrap_key(wrapping_key: bytes, key: bytes) -> str:
        """Encrypt raw key bytes under another key (recovery wrap)."""
        nonce = os.urandom(CipherService.NONCE_LENGTH)
        ciphertext = AESGCM(wrapping_key).encrypt(nonce, key, None)
        return CipherService.encode_for_storage(nonce + ciphertext)

    @staticmethod
    def unwrap_key(wrapping_key: bytes, blob: str) -> bytes:
        """Reverse wrap_key(). Raises DecryptionError on any failure."""
        key = CipherService._open(wrapping_key, blob)
        if len(key) != CipherService.KEY_LENGTH:
            raise DecryptionError("Unwrapped key has an unexpected length")
        return key

    @staticmethod
    def _open(key: bytes, blob: str) -> bytes:
        try:
            raw = CipherService.decode_from_storage(blob)
        except (binascii.Error, ValueError, AttributeError) as e:
            raise DecryptionError("Cipher blob is not valid base64") from e

        if len(raw) < CipherService.NONCE_LENGTH + CipherService.TAG_LENGTH:
            raise DecryptionError("Cipher blob is too short")

        nonce = raw[:CipherService.NONCE_LENGTH]
        ciphertext = raw[CipherService.NONCE_LENGTH:]
        try:
            plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag did not verify") from e
        except (ValueError, TypeError) as e:
            # AESGCM rejects keys that are not 128/192/256 bits
            raise DecryptionError(f"Invalid decryption key: {e}") from e

        return plaintext

    @staticmethod
    def hash_key(key: bytes) -> str:
        """
        Verification hash for a derived key.

        The account row stores SHA-256(key) rather than the key itself;
        login compares hashes of freshly derived keys.
        """
        return CipherService.encode_for_storage(hashlib.sha256(key).digest())

    @staticmethod
    def encode_for_storage(data: bytes) -> str:
        """Encode binary data for storage (base64)."""
        return base64.b64encode(data).decode('utf-8')

    @staticmethod
    def decode_from_storage(data: str) -> bytes:
        """Decode base64-encoded data from storage."""
        return base64.b64decode(data.encode('utf-8'), validate=True)


def derive_key(password: str, salt: bytes, iterations: int = CipherService.PBKDF2_ITERATIONS) -> bytes:
    """Module-level shortcut for CipherService.derive_key()."""
    return CipherService.derive_key(password, salt, iterations)


def encrypt(key: bytes, plaintext: str) -> str:
    """Module-level shortcut for CipherService.encrypt()."""
    return CipherService.encrypt(key, plaintext)


def decrypt(key: bytes, blob: str) -> str:
    """Module-level shortcut for CipherService.decrypt()."""
    return CipherService.decrypt(key, blob)
