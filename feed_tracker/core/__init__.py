"""
Core domain models and business logic.

This package contains the pipeline's data types and the algorithms that
are independent of storage and collaborators: identity and hashing,
deduplication, the processing state machine, the work queue and tag
resolution.
"""

from .types import (
    ClaimedArticle,
    ContentIdentity,
    CycleReport,
    DedupDecision,
    DedupOutcome,
    Priority,
    ProcessingStatus,
    RawItem,
    ResolvedTag,
    SummaryMode,
    SummaryResult,
)
from .identity import content_fingerprint, identify, normalize_url
from .dedup import DedupEngine, is_cross_source_duplicate
from .queue import ServiceLimits, WorkQueue
from .tags import TagNode, TagTaxonomy, resolve_tags

__all__ = [
    "ClaimedArticle",
    "ContentIdentity",
    "CycleReport",
    "DedupDecision",
    "DedupOutcome",
    "Priority",
    "ProcessingStatus",
    "RawItem",
    "ResolvedTag",
    "SummaryMode",
    "SummaryResult",
    "content_fingerprint",
    "identify",
    "normalize_url",
    "DedupEngine",
    "is_cross_source_duplicate",
    "ServiceLimits",
    "WorkQueue",
    "TagNode",
    "TagTaxonomy",
    "resolve_tags",
]
