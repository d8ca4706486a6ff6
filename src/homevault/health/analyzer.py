# HomeVault - Password Health Analyzer
#
# Read-only aggregate over the active account's credentials:
#   weak   - plaintext does not meet the strength requirement
#   reused - the same plaintext (by SHA-256) appears in 2+ entries
#   stale  - not updated for more than 180 days
#
# Recomputed from scratch on every call. Entries that fail to decrypt are
# logged and left out of every category.

import hashlib
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from ..errors import DecryptionError
from ..crypto.cipher import CipherService
from ..storage.models import CredentialEntry, now_ms
from .strength import StrengthResult, estimate_password_strength

logger = logging.getLogger(__name__)

STALE_THRESHOLD_DAYS = 180
STALE_THRESHOLD_MS = STALE_THRESHOLD_DAYS * 24 * 60 * 60 * 1000

CATEGORY_WEAK = "weak"
CATEGORY_REUSED = "reused"
CATEGORY_STALE = "stale"
CATEGORIES = (CATEGORY_WEAK, CATEGORY_REUSED, CATEGORY_STALE)

EntryKey = Union[int, str]


def health_key(entry: CredentialEntry) -> EntryKey:
    """Stable key for an entry: its id, or its cipher blob before it has one."""
    if entry.id is not None:
        return entry.id
    return f"cipher:{entry.password_cipher}"


@dataclass
class EntryHealth:
    key: EntryKey
    strength: StrengthResult
    updated_at: int
    weak: bool = False
    reused: bool = False
    stale: bool = False

    @property
    def healthy(self) -> bool:
        return not (self.weak or self.reused or self.stale)


@dataclass
class HealthStats:
    total: int = 0
    weak: int = 0
    reused: int = 0
    stale: int = 0
    healthy: int = 0


@dataclass
class PasswordHealthReport:
    """
    Result of one analysis pass.

    Attributes:
        entries: Per-entry result for every entry that decrypted
        categories: Entry keys per category
        failed: Keys of entries that could not be decrypted
        stats: Counts; total includes failed entries
        checked_at: Analysis time (epoch ms)
    """
    entries: Dict[EntryKey, EntryHealth] = field(default_factory=dict)
    categories: Dict[str, Set[EntryKey]] = field(
        default_factory=lambda: {category: set() for category in CATEGORIES}
    )
    failed: List[EntryKey] = field(default_factory=list)
    stats: HealthStats = field(default_factory=HealthStats)
    checked_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "checked_at": self.checked_at,
            "stats": vars(self.stats).copy(),
            "categories": {name: sorted(keys, key=str) for name, keys in self.categories.items()},
            "failed": list(self.failed),
            "entries": [
                {
                    "key": health.key,
                    "score": health.strength.score,
                    "label": health.strength.label,
                    "weak": health.weak,
                    "reused": health.reused,
                    "stale": health.stale,
                    "suggestions": list(health.strength.suggestions),
                }
                for health in self.entries.values()
            ],
        }


async def analyze_password_health(
    entries: Iterable[CredentialEntry],
    key: bytes,
    now: Optional[int] = None,
) -> PasswordHealthReport:
    """
    Classify every entry as weak, reused and/or stale.

    Args:
        entries: The account's credential entries
        key: The account's current master key
        now: Reference time in epoch ms (default: current time)

    Returns:
        PasswordHealthReport
    """
    checked_at = now if now is not None else now_ms()
    stale_before = checked_at - STALE_THRESHOLD_MS
    report = PasswordHealthReport(checked_at=checked_at)

    digests: Dict[str, List[EntryKey]] = {}
    entries = list(entries)
    report.stats.total = len(entries)

    for entry in entries:
        entry_key = health_key(entry)
        try:
            plaintext = CipherService.decrypt(key, entry.password_cipher)
        except DecryptionError as e:
            logger.warning(f"Skipping credential {entry_key} in health analysis: {e}")
            report.failed.append(entry_key)
            continue

        strength = estimate_password_strength(plaintext)
        updated_at = entry.updated_at or entry.created_at or 0
        health = EntryHealth(
            key=entry_key,
            strength=strength,
            updated_at=updated_at,
            weak=not strength.meets_requirement,
            stale=updated_at < stale_before,
        )
        report.entries[entry_key] = health
        digest = hashlib.sha256(plaintext.encode("utf-8")).hexdigest()
        digests.setdefault(digest, []).append(entry_key)

    for keys in digests.values():
        if len(keys) >= 2:
            for entry_key in keys:
                report.entries[entry_key].reused = True

    for entry_key, health in report.entries.items():
        if health.weak:
            report.categories[CATEGORY_WEAK].add(entry_key)
        if health.reused:
            report.categories[CATEGORY_REUSED].add(entry_key)
        if health.stale:
            report.categories[CATEGORY_STALE].add(entry_key)

    report.stats.weak = len(report.categories[CATEGORY_WEAK])
    report.stats.reused = len(report.categories[CATEGORY_REUSED])
    report.stats.stale = len(report.categories[CATEGORY_STALE])
    report.stats.healthy = sum(1 for health in report.entries.values() if health.healthy)

    logger.debug(
        f"Password health: {report.stats.total} total, {report.stats.weak} weak, "
        f"{report.stats.reused} reused, {report.stats.stale} stale, "
        f"{len(report.failed)} undecryptable"
    )
    return report


class PasswordHealthAnalyzer:
    """Runs the analysis over an account's stored credentials."""

    def __init__(self, backend):
        self.backend = backend

    async def analyze(self, session, now: Optional[int] = None) -> PasswordHealthReport:
        entries = await self.backend.credentials.where("owner_email").equals(session.email).to_array()
        return await analyze_password_health(entries, session.key, now=now)
