"""
Search, filtering and relevance scoring over saved threads.

All matching is a linear, case-insensitive substring scan over thread
bodies fetched one at a time from a store. The scan walks list() order
(most recently saved first) and stops fetching once `limit` matches have
been collected.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .errors import ValidationError
from .storage.base import StorageProvider
from .types import Thread, ThreadDescriptor, parse_utc_timestamp

logger = logging.getLogger(__name__)

BASE_SCORE = 50
TITLE_BONUS = 30
SUMMARY_BONUS = 20
CONTENT_BONUS = 10
TAG_BONUS = 15
RECENT_WEEK_BONUS = 10
RECENT_MONTH_BONUS = 5
ID_LOOKUP_SCORE = 100

MAX_TOPIC_HINTS = 10
MAX_TITLE_HINTS = 5

_SECONDS_PER_DAY = 60 * 60 * 24
_CODE_MARKERS = ("```", "function ", "class ")
_DEBUG_MARKERS = ("error", "bug", "fix")


@dataclass
class FindCriteria:
    """Search filters. Every criterion is optional; present ones are ANDed."""
    title: Optional[str] = None
    title_contains: Optional[str] = None
    query: Optional[str] = None
    tags: Optional[list[str]] = None
    source_app: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: int = 10

    @property
    def search_term(self) -> Optional[str]:
        """Term used for relevance scoring: the query, else title_contains."""
        return self.query or self.title_contains

    def to_dict(self) -> dict:
        """Echo of the active filters for tool results."""
        d: dict = {}
        if self.query:
            d["query"] = self.query
        if self.title:
            d["title"] = self.title
        if self.title_contains:
            d["titleContains"] = self.title_contains
        if self.tags:
            d["tags"] = list(self.tags)
        if self.source_app:
            d["sourceApp"] = self.source_app
        if self.date_from or self.date_to:
            d["dateRange"] = {k: v for k, v in (("from", self.date_from), ("to", self.date_to)) if v}
        return d


@dataclass
class Relevance:
    score: int
    matched_fields: list[str] = field(default_factory=list)
    message_count: int = 0
    word_count: int = 0
    topic_hints: list[str] = field(default_factory=list)
    age_in_days: int = 0

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "matchedFields": list(self.matched_fields),
            "messageCount": self.message_count,
            "wordCount": self.word_count,
            "topicHints": list(self.topic_hints),
            "ageInDays": self.age_in_days,
        }


@dataclass
class ThreadMatch:
    """A search hit: index entry, full body, and optional relevance info."""
    descriptor: ThreadDescriptor
    thread: Thread
    relevance: Optional[Relevance] = None


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def age_in_days(saved_at: str, now: Optional[datetime] = None) -> float:
    """Fractional days since saved_at."""
    delta = _now(now) - parse_utc_timestamp(saved_at)
    return delta.total_seconds() / _SECONDS_PER_DAY


def _round_days(days: float) -> int:
    # Halves round up
    return int(math.floor(days + 0.5))


def count_words(thread: Thread) -> int:
    return sum(len(m.content.split()) for m in thread.messages)


def extract_topic_hints(thread: Thread) -> list[str]:
    """Tags, long title words, and 'code' / 'debugging' content markers."""
    hints: list[str] = []

    if thread.metadata.tags:
        hints.extend(thread.metadata.tags)

    title_words = [w for w in thread.metadata.title.lower().split() if len(w) > 3]
    hints.extend(title_words[:MAX_TITLE_HINTS])

    all_content = " ".join(m.content for m in thread.messages)
    if any(marker in all_content for marker in _CODE_MARKERS):
        hints.append("code")
    if any(marker in all_content for marker in _DEBUG_MARKERS):
        hints.append("debugging")

    return list(dict.fromkeys(hints))[:MAX_TOPIC_HINTS]


def _contains(haystack: Optional[str], needle_lower: str) -> bool:
    return haystack is not None and needle_lower in haystack.lower()


def _parse_bound(value: str) -> datetime:
    try:
        return parse_utc_timestamp(value)
    except ValueError:
        raise ValidationError(f"Invalid date: {value!r}")


def _within_dates(created_at: str, date_from: Optional[str], date_to: Optional[str]) -> bool:
    try:
        created = parse_utc_timestamp(created_at)
    except ValueError:
        logger.warning("Unparseable createdAt %r; excluded from date filter", created_at)
        return False
    if date_from and created < _parse_bound(date_from):
        return False
    if date_to and created > _parse_bound(date_to):
        return False
    return True


def matches_filters(thread: Thread, criteria: FindCriteria) -> bool:
    """True if the thread satisfies every present criterion."""
    meta = thread.metadata

    if criteria.title and meta.title != criteria.title:
        return False

    if criteria.title_contains and not _contains(meta.title, criteria.title_contains.lower()):
        return False

    if (criteria.date_from or criteria.date_to) and not _within_dates(
        meta.created_at, criteria.date_from, criteria.date_to
    ):
        return False

    if criteria.source_app and meta.source_app != criteria.source_app:
        return False

    if criteria.tags:
        if not meta.tags:
            return False
        thread_tags = {t.lower() for t in meta.tags}
        if not all(t.lower() in thread_tags for t in criteria.tags):
            return False

    if criteria.query:
        q = criteria.query.lower()
        if not (
            _contains(meta.title, q)
            or _contains(meta.summary, q)
            or any(q in m.content.lower() for m in thread.messages)
        ):
            return False

    return True


def calculate_relevance(
    thread: Thread,
    descriptor: ThreadDescriptor,
    query: Optional[str] = None,
    title_contains: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[int, list[str]]:
    """
    Heuristic relevance score and the fields the search term matched.

    Without a query or title_contains only the base score and the recency
    bonus apply. Content is only scanned for a query, not for title_contains.
    """
    score = BASE_SCORE
    matched: list[str] = []
    meta = thread.metadata

    term = query or title_contains
    if term:
        t = term.lower()

        if _contains(meta.title, t):
            score += TITLE_BONUS
            matched.append("title")

        if _contains(meta.summary, t):
            score += SUMMARY_BONUS
            matched.append("summary")

        if query:
            for message in thread.messages:
                if t in message.content.lower():
                    score += CONTENT_BONUS
                    matched.append("content")
                    break

        if meta.tags and any(t in tag.lower() for tag in meta.tags):
            score += TAG_BONUS
            matched.append("tags")

    age = age_in_days(descriptor.saved_at, now)
    if age < 7:
        score += RECENT_WEEK_BONUS
    elif age < 30:
        score += RECENT_MONTH_BONUS

    return score, list(dict.fromkeys(matched))


def describe_relevance(
    thread: Thread,
    descriptor: ThreadDescriptor,
    score: int,
    matched_fields: list[str],
    now: Optional[datetime] = None,
) -> Relevance:
    return Relevance(
        score=score,
        matched_fields=matched_fields,
        message_count=len(thread.messages),
        word_count=count_words(thread),
        topic_hints=extract_topic_hints(thread),
        age_in_days=_round_days(age_in_days(descriptor.saved_at, now)),
    )


def search_threads(
    store: StorageProvider,
    criteria: FindCriteria,
    include_relevance: bool = True,
    now: Optional[datetime] = None,
) -> list[ThreadMatch]:
    """
    Scan the store for threads matching the criteria.

    Bodies are fetched sequentially in list() order until `limit` matches
    are found; later descriptors are never fetched. With include_relevance
    the matches are sorted by score, descending, keeping list() order for
    ties. Without it they stay in list() order.
    """
    now = _now(now)
    results: list[ThreadMatch] = []

    for descriptor in store.list():
        if len(results) >= criteria.limit:
            break

        thread = store.get(descriptor.id)
        if thread is None:
            continue

        if not matches_filters(thread, criteria):
            continue

        match = ThreadMatch(descriptor=descriptor, thread=thread)
        if include_relevance:
            score, matched = calculate_relevance(
                thread, descriptor, criteria.query, criteria.title_contains, now,
            )
            match.relevance = describe_relevance(thread, descriptor, score, matched, now)
        results.append(match)

    if include_relevance:
        results.sort(key=lambda m: m.relevance.score, reverse=True)

    logger.debug("Search scanned store for %d matches (limit %d)", len(results), criteria.limit)
    return results


# -----------------------------------------------------------------------------
# Lookup helpers
# -----------------------------------------------------------------------------

def find_by_title(store: StorageProvider, title: str) -> Optional[tuple[ThreadDescriptor, Thread]]:
    """First thread in list() order whose title equals `title` exactly."""
    for descriptor in store.list():
        thread = store.get(descriptor.id)
        if thread is not None and thread.metadata.title == title:
            return descriptor, thread
    return None


def find_by_title_contains(
    store: StorageProvider, text: str,
) -> Optional[tuple[ThreadDescriptor, Thread]]:
    """Most recently saved thread whose title contains `text` (case-insensitive)."""
    needle = text.lower()
    for descriptor in store.list():
        thread = store.get(descriptor.id)
        if thread is not None and needle in thread.metadata.title.lower():
            return descriptor, thread
    return None


def find_descriptor(store: StorageProvider, id: str) -> Optional[ThreadDescriptor]:
    for descriptor in store.list():
        if descriptor.id == id:
            return descriptor
    return None
