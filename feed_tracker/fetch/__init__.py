"""Feed fetching."""

from .reader import FeedReader, HttpFeedReader, parse_feed, parse_retry_after

__all__ = ["FeedReader", "HttpFeedReader", "parse_feed", "parse_retry_after"]
