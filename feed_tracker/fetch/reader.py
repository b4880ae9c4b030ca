"""
Feed reading over HTTP.

The reader returns raw items for one feed or raises FetchError with one of
three kinds:
1. unreachable: network failure, timeout or non-success status
2. parse_error: the body is not a usable RSS/Atom document
3. rate_limited: the source answered 429, optionally with Retry-After
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import calendar
from datetime import datetime, timezone
from email.utils import format_datetime, parsedate_to_datetime
import logging
from typing import Any

import feedparser
import httpx

from ..core.errors import FetchError
from ..core.types import RawItem


logger = logging.getLogger("feed_tracker.fetch")


class FeedReader(ABC):
    """Interface of the feed reading collaborator."""

    @abstractmethod
    async def fetch(self, url: str, since: datetime | None = None) -> list[RawItem]:
        """Return the feed's current items.

        Args:
            url: Feed URL
            since: Time of the last successful fetch, used for conditional GET

        Raises:
            FetchError: If the feed could not be read
        """
        raise NotImplementedError


class HttpFeedReader(FeedReader):
    """httpx + feedparser implementation of FeedReader."""

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = "feed-tracker/0.1",
        trust_env: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self.user_agent = user_agent
        self.trust_env = trust_env
        self.transport = transport

    async def fetch(self, url: str, since: datetime | None = None) -> list[RawItem]:
        headers = {"User-Agent": self.user_agent}
        if since is not None:
            headers["If-Modified-Since"] = _http_date(since)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
                trust_env=self.trust_env,
                transport=self.transport,
            ) as client:
                resp = await client.get(url)
        except httpx.TimeoutException as exc:
            raise FetchError(FetchError.UNREACHABLE, f"timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise FetchError(FetchError.UNREACHABLE, f"{type(exc).__name__}: {exc}") from exc

        if resp.status_code == 304:
            logger.debug("Feed %s not modified", url)
            return []
        if resp.status_code == 429:
            retry_after = parse_retry_after(resp.headers.get("Retry-After"))
            raise FetchError(FetchError.RATE_LIMITED, "HTTP 429", retry_after=retry_after)
        if resp.status_code >= 400:
            raise FetchError(FetchError.UNREACHABLE, f"HTTP {resp.status_code}")

        return parse_feed(resp.content, url)


def parse_feed(body: bytes | str, url: str = "") -> list[RawItem]:
    """Parse an RSS/Atom document into raw items.

    Raises:
        FetchError: With kind parse_error if the document has no usable entries
    """
    parsed = feedparser.parse(body)
    entries = parsed.get("entries") or []
    if parsed.get("bozo") and not entries:
        reason = parsed.get("bozo_exception")
        raise FetchError(FetchError.PARSE_ERROR, f"Unparseable feed {url}: {reason}")
    if not entries and not parsed.get("feed"):
        raise FetchError(FetchError.PARSE_ERROR, f"No feed document at {url}")
    return [_entry_to_item(entry) for entry in entries]


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header (delta-seconds or HTTP date)."""
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return float(value)
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def _entry_to_item(entry: Any) -> RawItem:
    content = ""
    blocks = entry.get("content") or []
    if blocks:
        content = "\n".join(block.get("value", "") for block in blocks if block.get("value"))
    if not content:
        content = entry.get("summary") or entry.get("description") or ""
    return RawItem(
        guid=(entry.get("id") or entry.get("guid") or "").strip() or None,
        title=(entry.get("title") or "").strip(),
        url=(entry.get("link") or "").strip() or None,
        content=content,
        published_at=_entry_time(entry),
        author=entry.get("author") or None,
    )


def _entry_time(entry: Any) -> datetime | None:
    for key in ("published_parsed", "updated_parsed"):
        struct = entry.get(key)
        if struct:
            return datetime.fromtimestamp(calendar.timegm(struct), tz=timezone.utc)
    return None


def _http_date(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)
