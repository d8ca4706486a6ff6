# HomeVault - Crypto Module
#
# Master password → key (PBKDF2), AES-256-GCM secret encryption,
# recovery mnemonics.

from .cipher import CipherService, decrypt, derive_key, encrypt
from .mnemonic import (
    generate_mnemonic_phrase,
    generate_mnemonic_words,
    normalize_mnemonic,
    normalize_mnemonic_word,
    pick_challenge_positions,
    split_mnemonic,
)

__all__ = [
    "CipherService",
    "derive_key",
    "encrypt",
    "decrypt",
    "generate_mnemonic_phrase",
    "generate_mnemonic_words",
    "normalize_mnemonic",
    "normalize_mnemonic_word",
    "pick_challenge_positions",
    "split_mnemonic",
]
