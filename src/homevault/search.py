# HomeVault - Lightweight Search Index
#
# Every credential, site and document has one index row per owner:
# a title, a subtitle and a keyword list. A query matches a row when each
# of its tokens occurs in the title or in one of the keywords.

from typing import Iterable, List, Union

from .storage.models import (
    SEARCH_KIND_DOC,
    SEARCH_KIND_PASSWORD,
    SEARCH_KIND_SITE,
    CredentialEntry,
    DocumentRecord,
    SearchIndexRecord,
    SiteRecord,
)
from .tags import normalize_keywords, tokenize

DEFAULT_SEARCH_LIMIT = 20

IndexedRecord = Union[CredentialEntry, SiteRecord, DocumentRecord]


def build_index_record(record: IndexedRecord) -> SearchIndexRecord:
    """Index row for a stored record (which must already have an id)."""
    if isinstance(record, CredentialEntry):
        kind = SEARCH_KIND_PASSWORD
        subtitle = record.username
        texts = [record.title, record.username, record.url]
    elif isinstance(record, SiteRecord):
        kind = SEARCH_KIND_SITE
        subtitle = record.url
        texts = [record.title, record.url, record.description]
    elif isinstance(record, DocumentRecord):
        kind = SEARCH_KIND_DOC
        subtitle = record.description
        texts = [record.title, record.description]
        if record.document is not None:
            if record.document.file is not None:
                texts.append(record.document.file.name)
            if record.document.link is not None:
                texts.append(record.document.link.url)
    else:
        raise TypeError(f"Cannot index {type(record).__name__}")

    keywords = []
    for text in texts:
        keywords.extend(tokenize(text))
    keywords.extend(tag.lower() for tag in record.tags)

    return SearchIndexRecord(
        owner_email=record.owner_email,
        kind=kind,
        ref_id=str(record.id),
        title=record.title,
        subtitle=(subtitle or "").strip() or None,
        keywords=normalize_keywords(keywords),
        updated_at=record.updated_at,
    )


def matches_query(entry: SearchIndexRecord, tokens: List[str]) -> bool:
    haystack = [entry.title.lower()] + [keyword.lower() for keyword in entry.keywords]
    return all(any(token in text for text in haystack) for token in tokens)


def title_hits(entry: SearchIndexRecord, tokens: List[str]) -> int:
    """Number of query tokens found in the row title."""
    title = entry.title.lower()
    return sum(1 for token in tokens if token in title)


def search_entries(
    entries: Iterable[SearchIndexRecord],
    query: str,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> List[SearchIndexRecord]:
    """
    Filter index rows by query.

    Rows with more query tokens in their title rank first; ties go to the
    most recently updated row. An empty query returns the most recently
    updated rows.
    """
    tokens = tokenize(query)
    hits = [entry for entry in entries if not tokens or matches_query(entry, tokens)]
    hits.sort(
        key=lambda entry: (title_hits(entry, tokens), entry.updated_at, entry.id or 0),
        reverse=True,
    )
    return hits[:limit] if limit and limit > 0 else hits
