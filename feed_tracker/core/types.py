"""
Core data types for the feed tracker.

This module defines the value objects passed between pipeline stages:
- RawItem: An item as returned by the feed reader
- ContentIdentity: Identity key and content fingerprint of a raw item
- SummaryResult: Output of the summarization service
- ResolvedTag: A tag assignment that survived resolution
- QueuedArticle / ClaimedArticle: Work queue references
- CycleReport: Aggregate statistics of one fetch cycle
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SummaryMode(str, Enum):
    BRIEF = "brief"
    DETAILED = "detailed"
    BULLET = "bullet"


class TagCategory(str, Enum):
    TOPIC = "topic"
    ENTITY = "entity"
    SENTIMENT = "sentiment"
    INDUSTRY = "industry"


class TagSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    HYBRID = "hybrid"


class DedupOutcome(str, Enum):
    NEW = "new"
    UNCHANGED = "unchanged"
    UPDATED = "updated"
    DUPLICATE = "duplicate"


@dataclass
class RawItem:
    """An item as delivered by the feed reader.

    Attributes:
        guid: The source's unique identifier, may be empty
        title: The item headline
        url: Link to the article
        content: Body text or HTML as published in the feed
        published_at: Published timestamp if the feed provides one
        author: Optional author name
    """
    guid: str | None
    title: str
    url: str | None
    content: str = ""
    published_at: datetime | None = None
    author: str | None = None


@dataclass(frozen=True)
class ContentIdentity:
    """Stable identity and change fingerprint of a raw item.

    Attributes:
        key: GUID, or the normalized URL when the GUID is empty
        fingerprint: SHA-256 hex digest over normalized title and body
        key_source: "guid" or "url"
        url: Normalized article URL, empty if it could not be parsed
    """
    key: str
    fingerprint: str
    key_source: str
    url: str = ""


@dataclass
class DedupDecision:
    """Result of classifying (and applying) one incoming item."""
    outcome: DedupOutcome
    article_id: int | None
    similarity: float | None = None


@dataclass
class SummaryResult:
    """Output of the summarization service."""
    text: str
    word_count: int
    model_id: str
    latency_ms: int


@dataclass(frozen=True)
class ResolvedTag:
    """A tag assignment that passed taxonomy, threshold and count checks."""
    tag_id: int
    name: str
    confidence: float


@dataclass(frozen=True)
class QueuedArticle:
    """Reference to an article waiting in the work queue."""
    article_id: int
    feed_id: int
    priority: Priority


@dataclass(frozen=True)
class ClaimedArticle:
    """An article exclusively claimed by one worker.

    The claim token guards every write the worker makes for this article.
    """
    article_id: int
    feed_id: int
    priority: Priority
    token: str


@dataclass
class CycleReport:
    """Aggregate statistics of one fetch cycle.

    Attributes:
        fetched: Raw items returned by feed readers
        new: Items inserted as new articles
        updated: Items that changed an existing article
        unchanged: Items identical to what is stored
        duplicates: Items linked to an article from another source
        malformed: Items rejected before queueing
        completed: Articles that reached completed
        failed: Articles that reached failed
        released: Articles returned to pending (timeouts, lost claims)
        retries: Transient failures retried inside the coordinator
        errors: Articles whose processing raised an unexpected error
        feeds_fetched: Feeds fetched successfully
        feed_errors: Map of feed URL to error description
        deactivated_feeds: Feeds deactivated during this cycle
        counter_drifts: Tag counters corrected during this cycle
    """
    fetched: int = 0
    new: int = 0
    updated: int = 0
    unchanged: int = 0
    duplicates: int = 0
    malformed: int = 0
    completed: int = 0
    failed: int = 0
    released: int = 0
    retries: int = 0
    errors: int = 0
    feeds_fetched: int = 0
    feed_errors: dict[str, str] = field(default_factory=dict)
    deactivated_feeds: list[str] = field(default_factory=list)
    counter_drifts: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)
