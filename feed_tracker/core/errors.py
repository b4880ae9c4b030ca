"""Error taxonomy for the processing pipeline.

Transient errors are retried inside the pipeline coordinator and only show
up in aggregate cycle statistics. Persistent errors end an article's
processing with a reason written to ``articles.last_error``.
"""

from __future__ import annotations


class FeedTrackerError(Exception):
    """Base class for all feed_tracker errors."""


class ConfigError(FeedTrackerError):
    """Configuration could not be loaded or is invalid."""


class MalformedItem(FeedTrackerError):
    """A raw feed item carries neither a GUID nor a usable URL."""


class FetchError(FeedTrackerError):
    """A feed could not be fetched.

    Attributes:
        kind: "unreachable", "parse_error" or "rate_limited"
        retry_after: Seconds the source asked us to wait, if any
    """

    UNREACHABLE = "unreachable"
    PARSE_ERROR = "parse_error"
    RATE_LIMITED = "rate_limited"

    def __init__(self, kind: str, message: str = "", retry_after: float | None = None):
        super().__init__(message or kind)
        self.kind = kind
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return self.kind != self.PARSE_ERROR


class ProcessingError(FeedTrackerError):
    """A downstream processing call failed.

    Attributes:
        kind: "transient" (retry-eligible) or "rejected" (persistent)
        retry_after: Optional hint from the collaborator for rate limits
    """

    TRANSIENT = "transient"
    REJECTED = "rejected"

    def __init__(self, kind: str, message: str = "", retry_after: float | None = None):
        super().__init__(message or kind)
        self.kind = kind
        self.retry_after = retry_after

    @property
    def transient(self) -> bool:
        return self.kind == self.TRANSIENT


class SummarizeError(ProcessingError):
    """The summarization service failed."""


class TagError(ProcessingError):
    """The tagging service failed."""


class ClaimConflict(FeedTrackerError):
    """Another worker holds (or took over) the claim on an article.

    Not a failure: the caller drops the article and moves on.
    """

    def __init__(self, article_id: int):
        super().__init__(f"Claim conflict on article {article_id}")
        self.article_id = article_id


class InvalidTransition(FeedTrackerError):
    """A processing status change that the state machine does not allow."""


class TaxonomyCycleError(FeedTrackerError):
    """Setting a tag parent would make the hierarchy cyclic."""


class CounterDrift(FeedTrackerError):
    """A tag usage counter disagreed with its live association count.

    Instances are returned by ``Store.verify_usage_counts`` after the counter
    has been corrected; they are reported, not raised.
    """

    def __init__(self, tag_name: str, stored: int, actual: int):
        super().__init__(f"Tag '{tag_name}' usage_count={stored}, actual={actual}")
        self.tag_name = tag_name
        self.stored = stored
        self.actual = actual
