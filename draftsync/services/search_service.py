"""Local search over drafts and cached images.

The index is rebuilt from ledger snapshots on each query, so it can never be
stale with respect to offline mutations. Scoring is field-weighted: a term in
the title counts most, then tags and categories, then anywhere in the text.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Literal

from draftsync.schemas.search import SearchResult

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from draftsync.schemas.draft import DraftRead
    from draftsync.schemas.image import ImageRead
    from draftsync.schemas.search import SearchKind

TITLE_WEIGHT = 10
LABEL_WEIGHT = 5
TEXT_WEIGHT = 1
MAX_KEYWORDS = 20
EXCERPT_LENGTH = 160

_NON_WORD = re.compile(r"[^\w\s]")

SortOrder = Literal["relevance", "date"]


@dataclass
class SearchEntry:
    """Searchable projection of one draft or image."""

    id: str
    kind: SearchKind
    title: str
    content: str
    last_modified: datetime
    tags: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    keywords: list[str] = field(default_factory=list)

    def haystack(self) -> str:
        return " ".join(
            [self.title, self.content, *self.tags, *self.categories, *self.keywords]
        ).lower()


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """Return the most frequent words of two or more characters, most frequent first."""
    words = [w for w in _NON_WORD.sub(" ", text.lower()).split() if len(w) > 1]
    return [word for word, _ in Counter(words).most_common(limit)]


def build_index(drafts: Iterable[DraftRead], images: Iterable[ImageRead]) -> list[SearchEntry]:
    index = [
        SearchEntry(
            id=draft.id,
            kind="draft",
            title=draft.title,
            content=draft.content,
            last_modified=draft.last_modified,
            tags=list(draft.tags),
            categories=list(draft.categories),
            keywords=extract_keywords(draft.content),
        )
        for draft in drafts
    ]
    index.extend(
        SearchEntry(
            id=image.id,
            kind="image",
            title=image.original_name,
            content=image.original_name,
            last_modified=image.last_accessed,
            keywords=[image.original_name, image.mime_type],
        )
        for image in images
    )
    return index


def score_entry(entry: SearchEntry, terms: Iterable[str]) -> int:
    title = entry.title.lower()
    haystack = entry.haystack()
    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        if any(term in tag.lower() for tag in entry.tags):
            score += LABEL_WEIGHT
        if any(term in category.lower() for category in entry.categories):
            score += LABEL_WEIGHT
        if term in haystack:
            score += TEXT_WEIGHT
    return score


def search(
    index: Iterable[SearchEntry],
    query: str,
    *,
    kind: SearchKind | None = None,
    limit: int = 50,
    sort_by: SortOrder = "relevance",
) -> list[SearchResult]:
    """Rank index entries against a whitespace-separated query.

    An empty query matches nothing. Ties in relevance fall back to the most
    recently modified entry.
    """
    terms = query.lower().split()
    if not terms or limit <= 0:
        return []
    results = []
    for entry in index:
        if kind is not None and entry.kind != kind:
            continue
        score = score_entry(entry, terms)
        if score > 0:
            results.append(
                SearchResult(
                    id=entry.id,
                    kind=entry.kind,
                    title=entry.title,
                    excerpt=entry.content[:EXCERPT_LENGTH] if entry.kind == "draft" else None,
                    last_modified=entry.last_modified,
                    score=score,
                )
            )
    if sort_by == "date":
        results.sort(key=lambda r: r.last_modified, reverse=True)
    else:
        results.sort(key=lambda r: (r.score, r.last_modified), reverse=True)
    return results[:limit]
