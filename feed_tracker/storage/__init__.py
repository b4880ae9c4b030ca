"""Relational persistence for feeds, articles, summaries and tags."""

from .models import Article, ArticleSource, ArticleTag, Base, Feed, Summary, Tag
from .store import PendingRef, ReleaseResult, Store

__all__ = [
    "Article",
    "ArticleSource",
    "ArticleTag",
    "Base",
    "Feed",
    "Summary",
    "Tag",
    "PendingRef",
    "ReleaseResult",
    "Store",
]
