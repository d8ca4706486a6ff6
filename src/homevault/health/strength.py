# HomeVault - Password Strength
#
# Heuristic strength estimate (score 0-4) used by registration, password
# change and the health report, plus a generator for strong random values.

import re
import secrets
import string
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List

PASSWORD_MIN_LENGTH = 8
PASSWORD_MIN_VARIETY = 3
PASSWORD_MINIMUM_STRENGTH_SCORE = 3
DEFAULT_GENERATED_PASSWORD_LENGTH = 16

PASSWORD_STRENGTH_REQUIREMENT = (
    f"Use at least {PASSWORD_MIN_LENGTH} characters mixing at least "
    f"{PASSWORD_MIN_VARIETY} of: lowercase, uppercase, digits, symbols."
)

STRENGTH_LABELS = ("very weak", "weak", "fair", "strong", "very strong")
EMPTY_LABEL = "not set"

SYMBOL_CHARS = "!@#$%^&*()-_=+[]{};:,.<>?/|"

# Common weak passwords (minimal list)
COMMON_PASSWORDS = frozenset({
    "password1", "password!", "passw0rd!", "p@ssw0rd", "qwerty123!", "welcome1!",
    "password123", "password1234", "admin123456", "welcome12345",
    "passw0rd123", "123456789012", "qwertyuiop12", "iloveyou1234",
})

_SEQUENTIAL_DIGITS = re.compile(r"0123|1234|2345|3456|4567|5678|6789")
_REPEATED_CHARS = re.compile(r"(.)\1{2,}", re.DOTALL)
_SINGLE_CHAR = re.compile(r"^(.)\1+$", re.DOTALL)


@dataclass
class StrengthResult:
    """Outcome of estimate_password_strength()."""
    score: int
    label: str
    meets_requirement: bool
    length: int
    variety: int
    has_lower: bool
    has_upper: bool
    has_number: bool
    has_symbol: bool
    suggestions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def estimate_password_strength(password: str) -> StrengthResult:
    """
    Score a password from 0 (very weak) to 4 (very strong).

    Length and character variety raise the score; runs of three or more
    identical characters, short digit sequences with little variety and
    well-known passwords pull it down.

    Args:
        password: Candidate password (non-strings count as empty)

    Returns:
        StrengthResult with score, label, requirement flag and suggestions
    """
    value = password if isinstance(password, str) else ""
    length = len(value)
    has_lower = any("a" <= c <= "z" for c in value)
    has_upper = any("A" <= c <= "Z" for c in value)
    has_number = any("0" <= c <= "9" for c in value)
    has_symbol = any(not (c.isascii() and c.isalnum()) for c in value)
    variety = sum((has_lower, has_upper, has_number, has_symbol))

    score = 0
    if length >= PASSWORD_MIN_LENGTH:
        score = 1
    if length >= 10 and variety >= 2:
        score = max(score, 2)
    if length >= PASSWORD_MIN_LENGTH and variety >= PASSWORD_MIN_VARIETY:
        score = max(score, 3)
    if (length >= 16 and variety >= 3) or (length >= 12 and variety == 4):
        score = max(score, 4)

    repeated = bool(_REPEATED_CHARS.search(value))
    if repeated:
        score = min(score, 2)
    if _SEQUENTIAL_DIGITS.search(value) and variety <= 2 and length < 16:
        score = min(score, 2)
    if _SINGLE_CHAR.match(value):
        score = 1
    common = value.lower() in COMMON_PASSWORDS
    if common:
        score = min(score, 1)
    if not value:
        score = 0

    meets_requirement = (
        length >= PASSWORD_MIN_LENGTH
        and variety >= PASSWORD_MIN_VARIETY
        and score >= PASSWORD_MINIMUM_STRENGTH_SCORE
    )

    suggestions = []
    if not value:
        suggestions.append(PASSWORD_STRENGTH_REQUIREMENT)
    else:
        if length < PASSWORD_MIN_LENGTH:
            suggestions.append(f"Use at least {PASSWORD_MIN_LENGTH} characters.")
        if variety < PASSWORD_MIN_VARIETY:
            suggestions.append("Mix at least three of: lowercase, uppercase, digits, symbols.")
        if repeated:
            suggestions.append("Avoid runs of repeated characters.")
        if common:
            suggestions.append("This password is too common.")
        if not meets_requirement and not suggestions:
            suggestions.append(PASSWORD_STRENGTH_REQUIREMENT)

    return StrengthResult(
        score=score,
        label=STRENGTH_LABELS[score] if value else EMPTY_LABEL,
        meets_requirement=meets_requirement,
        length=length,
        variety=variety,
        has_lower=has_lower,
        has_upper=has_upper,
        has_number=has_number,
        has_symbol=has_symbol,
        suggestions=suggestions,
    )


def is_password_strong(password: str, min_score: int = PASSWORD_MINIMUM_STRENGTH_SCORE) -> bool:
    strength = estimate_password_strength(password)
    return strength.meets_requirement and strength.score >= min_score


def generate_strong_password(
    length: int = DEFAULT_GENERATED_PASSWORD_LENGTH,
    include_symbols: bool = True,
) -> str:
    """
    Generate a random password containing every character class.

    Args:
        length: Desired length (raised to the number of classes if smaller)
        include_symbols: Include the symbol class

    Returns:
        Random password from the `secrets` CSPRNG
    """
    categories = [string.ascii_uppercase, string.ascii_lowercase, string.digits]
    if include_symbols:
        categories.append(SYMBOL_CHARS)
    pool = "".join(categories)
    target_length = max(length, len(categories))

    chars = [secrets.choice(category) for category in categories]
    chars.extend(secrets.choice(pool) for _ in range(target_length - len(chars)))

    # Fisher-Yates so the guaranteed characters land anywhere
    for index in range(len(chars) - 1, 0, -1):
        swap = secrets.randbelow(index + 1)
        chars[index], chars[swap] = chars[swap], chars[index]
    return "".join(chars)
