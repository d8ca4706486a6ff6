# HomeVault - Tag & Keyword Normalization
#
# Canonical form for user-entered labels used for filtering, and for the
# keyword lists stored in the lightweight search index.

import re
from typing import Iterable, List, Optional

# ASCII and full-width separators accepted in free-form tag input
_TAG_SEPARATORS = re.compile(r"[,，;；、\n]+")
_LEADING_HASHES = re.compile(r"^#+")
_TOKEN = re.compile(r"[^\W_]+", re.UNICODE)


def normalize_tags(tags: Iterable) -> List[str]:
    """
    Canonicalize a tag list.

    Trims each tag, strips leading '#', drops empties and non-strings, and
    removes case-insensitive duplicates while keeping the first spelling and
    the original order.
    """
    seen = set()
    result = []
    for raw in tags or []:
        if not isinstance(raw, str):
            continue
        normalized = _LEADING_HASHES.sub("", raw.strip()).strip()
        if not normalized:
            continue
        key = normalized.lower()
        if key in seen:
            continue
        seen.add(key)
        result.append(normalized)
    return result


def parse_tags_input(text: Optional[str]) -> List[str]:
    """Split free-form input ("work, #Home；bank") into a canonical list."""
    if not isinstance(text, str):
        return []
    segments = [segment.strip() for segment in _TAG_SEPARATORS.split(text)]
    return normalize_tags(segment for segment in segments if segment)


def ensure_tags_array(value) -> List[str]:
    if not isinstance(value, (list, tuple)):
        return []
    return normalize_tags(value)


def matches_all_tags(item_tags: Optional[Iterable[str]], required_tags: Iterable[str]) -> bool:
    """True if every required tag is present on the item (case-insensitive)."""
    required = [tag.lower() for tag in normalize_tags(required_tags)]
    if not required:
        return True
    item_set = {tag.lower() for tag in normalize_tags(item_tags or [])}
    if not item_set:
        return False
    return all(tag in item_set for tag in required)


def normalize_keywords(keywords: Iterable) -> List[str]:
    """Trim, drop empties and exact duplicates; order is preserved."""
    seen = set()
    result = []
    for keyword in keywords or []:
        if not isinstance(keyword, str):
            continue
        trimmed = keyword.strip()
        if not trimmed or trimmed in seen:
            continue
        seen.add(trimmed)
        result.append(trimmed)
    return result


def tokenize(text: Optional[str]) -> List[str]:
    """Lower-cased word tokens used for indexing and search queries."""
    if not text:
        return []
    return [token.lower() for token in _TOKEN.findall(text)]
