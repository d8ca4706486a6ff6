# HomeVault - Recovery Mnemonic
#
# A recovery phrase is an ordered list of words drawn from the packaged
# wordlist (256 words, 8 bits per word) with the `secrets` CSPRNG.
# There is no weaker fallback: if the OS random source is unavailable the
# generator refuses to produce a phrase.

import re
import secrets
from functools import lru_cache
from pathlib import Path
from typing import List

WORDLIST_PATH = Path(__file__).parent / "wordlist.txt"
DEFAULT_WORD_COUNT = 12
DEFAULT_CHALLENGE_SIZE = 3

_WHITESPACE = re.compile(r"\s+")


@lru_cache(maxsize=1)
def load_wordlist() -> tuple:
    """Load the fixed recovery wordlist (cached)."""
    with open(WORDLIST_PATH, "r", encoding="utf-8") as f:
        words = tuple(word.strip() for word in f.read().splitlines() if word.strip())
    if len(set(words)) != len(words):
        raise RuntimeError(f"Recovery wordlist contains duplicates: {WORDLIST_PATH}")
    return words


def _random_index(upper: int) -> int:
    try:
        return secrets.randbelow(upper)
    except NotImplementedError as e:
        raise RuntimeError(
            "No cryptographically secure random source is available; "
            "refusing to generate a recovery phrase"
        ) from e


def generate_mnemonic_words(word_count: int = DEFAULT_WORD_COUNT) -> List[str]:
    """Draw ``word_count`` words (12 when the count is not positive)."""
    count = word_count if isinstance(word_count, int) and word_count > 0 else DEFAULT_WORD_COUNT
    wordlist = load_wordlist()
    return [wordlist[_random_index(len(wordlist))] for _ in range(count)]


def generate_mnemonic_phrase(word_count: int = DEFAULT_WORD_COUNT) -> str:
    return " ".join(generate_mnemonic_words(word_count))


def normalize_mnemonic_word(value: str) -> str:
    return _WHITESPACE.sub(" ", value or "").strip().lower()


def normalize_mnemonic(value: str) -> str:
    """Collapse whitespace and lower-case every word of a phrase."""
    return " ".join(
        word for word in (normalize_mnemonic_word(w) for w in (value or "").split()) if word
    )


def split_mnemonic(value: str) -> List[str]:
    normalized = normalize_mnemonic(value)
    return normalized.split(" ") if normalized else []


def pick_challenge_positions(word_count: int, size: int = DEFAULT_CHALLENGE_SIZE) -> List[int]:
    """
    Pick distinct zero-based word positions for a recovery challenge.

    Args:
        word_count: Number of words in the stored phrase
        size: How many positions to challenge (clamped to word_count)

    Returns:
        Sorted list of positions
    """
    if word_count <= 0:
        return []
    size = max(1, min(size, word_count))
    pool = list(range(word_count))
    chosen = []
    for _ in range(size):
        chosen.append(pool.pop(_random_index(len(pool))))
    return sorted(chosen)
