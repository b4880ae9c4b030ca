"""
Article deduplication by identity key, content fingerprint and fuzzy titles.

Every incoming item is classified as exactly one of:
1. new: no stored article has the identity key
2. unchanged: the stored fingerprint matches
3. updated: the stored fingerprint differs, content is replaced in place
4. duplicate: a different feed already carries a story with a near-identical
   title published close in time (best effort). The earliest report leads
   the article; later ones are kept as secondary sources.

Cross-source matching is tuned against false positives: titles must be
long enough, both timestamps must be known and the similarity threshold
is high. A missed duplicate only costs one extra summary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Protocol, Sequence

from rapidfuzz import fuzz
from rapidfuzz.utils import default_process

from ..utils.time import to_naive_utc
from .types import ContentIdentity, DedupDecision, DedupOutcome, RawItem


logger = logging.getLogger("feed_tracker.dedup")


@dataclass(frozen=True)
class StoredFingerprint:
    """The part of a stored article the classifier needs."""
    article_id: int
    content_hash: str | None


@dataclass(frozen=True)
class TitleCandidate:
    """A recently published article considered for cross-source matching."""
    article_id: int
    feed_id: int
    title: str
    published_at: datetime | None


class ArticleIndex(Protocol):
    """Storage operations the deduplication engine relies on."""

    def get_fingerprint(self, guid: str) -> StoredFingerprint | None: ...

    def find_secondary_source(self, guid: str) -> int | None: ...

    def recent_titles(
        self, start: datetime, end: datetime, exclude_feed_id: int
    ) -> Sequence[TitleCandidate]: ...

    def insert_article(self, feed_id: int, item: RawItem, identity: ContentIdentity) -> int | None: ...

    def update_article_content(self, article_id: int, item: RawItem, identity: ContentIdentity) -> bool: ...

    def add_secondary_source(
        self, article_id: int, feed_id: int, item: RawItem, identity: ContentIdentity
    ) -> None: ...

    def promote_source(
        self, article_id: int, feed_id: int, item: RawItem, identity: ContentIdentity
    ) -> bool | None: ...


def title_similarity(left: str, right: str) -> float:
    """Order-insensitive similarity (0-100) of two normalized titles."""
    return fuzz.token_sort_ratio(left, right, processor=default_process)


def is_cross_source_duplicate(
    title: str,
    published_at: datetime | None,
    other_title: str,
    other_published_at: datetime | None,
    threshold: float = 92,
    window: timedelta = timedelta(hours=12),
    min_title_tokens: int = 4,
) -> float | None:
    """Decide whether two items from different sources report the same story.

    Returns:
        The similarity score if the pair counts as a duplicate, else None
    """
    if published_at is None or other_published_at is None:
        return None
    if abs(to_naive_utc(published_at) - to_naive_utc(other_published_at)) > window:
        return None
    if len(default_process(title).split()) < min_title_tokens:
        return None
    if len(default_process(other_title).split()) < min_title_tokens:
        return None
    score = title_similarity(title, other_title)
    if score >= threshold:
        return score
    return None


class DedupEngine:
    """Classifies incoming items and applies the matching storage change."""

    def __init__(
        self,
        index: ArticleIndex,
        enabled: bool = True,
        threshold: float = 92,
        window_hours: float = 12.0,
        min_title_tokens: int = 4,
    ):
        self.index = index
        self.cross_source_enabled = enabled
        self.threshold = threshold
        self.window = timedelta(hours=window_hours)
        self.min_title_tokens = min_title_tokens

    def ingest(self, feed_id: int, item: RawItem, identity: ContentIdentity) -> DedupDecision:
        """Classify one item and persist the result.

        Args:
            feed_id: The feed the item was fetched from
            item: The raw item
            identity: Identity key and fingerprint computed for the item

        Returns:
            DedupDecision naming the outcome and the affected article
        """
        stored = self.index.get_fingerprint(identity.key)
        if stored is not None:
            return self._apply_existing(stored, item, identity)

        source_article = self.index.find_secondary_source(identity.key)
        if source_article is not None:
            return DedupDecision(DedupOutcome.UNCHANGED, source_article)

        match = self._find_cross_source_match(feed_id, item)
        if match is not None:
            candidate, score = match
            if to_naive_utc(item.published_at) < candidate.published_at:
                promoted = self.index.promote_source(candidate.article_id, feed_id, item, identity)
                if promoted is None:
                    return self._resolve_conflict(item, identity)
                logger.info(
                    "Earlier report %r now leads article %s (similarity=%.1f)",
                    item.title,
                    candidate.article_id,
                    score,
                )
            else:
                self.index.add_secondary_source(candidate.article_id, feed_id, item, identity)
                logger.info(
                    "Linked %r to article %s as cross-source duplicate (similarity=%.1f)",
                    item.title,
                    candidate.article_id,
                    score,
                )
            return DedupDecision(DedupOutcome.DUPLICATE, candidate.article_id, similarity=score)

        article_id = self.index.insert_article(feed_id, item, identity)
        if article_id is not None:
            return DedupDecision(DedupOutcome.NEW, article_id)
        return self._resolve_conflict(item, identity)

    def _resolve_conflict(self, item: RawItem, identity: ContentIdentity) -> DedupDecision:
        # Lost a race on the key: the row exists now, treat as an update.
        stored = self.index.get_fingerprint(identity.key)
        if stored is None:
            raise RuntimeError(f"Article {identity.key!r} vanished after insert conflict")
        logger.debug("Insert conflict on %r resolved as update", identity.key)
        return self._apply_existing(stored, item, identity)

    def _apply_existing(
        self, stored: StoredFingerprint, item: RawItem, identity: ContentIdentity
    ) -> DedupDecision:
        if stored.content_hash == identity.fingerprint:
            return DedupDecision(DedupOutcome.UNCHANGED, stored.article_id)
        if self.index.update_article_content(stored.article_id, item, identity):
            return DedupDecision(DedupOutcome.UPDATED, stored.article_id)
        return DedupDecision(DedupOutcome.UNCHANGED, stored.article_id)

    def _find_cross_source_match(
        self, feed_id: int, item: RawItem
    ) -> tuple[TitleCandidate, float] | None:
        if not self.cross_source_enabled or item.published_at is None or not item.title:
            return None
        published = to_naive_utc(item.published_at)
        candidates = self.index.recent_titles(
            published - self.window, published + self.window, exclude_feed_id=feed_id
        )
        best: tuple[TitleCandidate, float] | None = None
        for candidate in candidates:
            score = is_cross_source_duplicate(
                item.title,
                published,
                candidate.title,
                candidate.published_at,
                threshold=self.threshold,
                window=self.window,
                min_title_tokens=self.min_title_tokens,
            )
            if score is None:
                continue
            if best is None or score > best[1]:
                best = (candidate, score)
        return best
