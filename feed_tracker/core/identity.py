"""
Content identity and change fingerprints for raw feed items.

The identity key decides which stored article an item belongs to; the
fingerprint decides whether that article's content actually changed.
Both are pure functions of the raw item.
"""

from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from .errors import MalformedItem
from .types import ContentIdentity, RawItem


_WS_RE = re.compile(r"\s+")

_DEFAULT_PORTS = {"http": 80, "https": 443}

# Query parameters that only carry campaign tracking.
_TRACKING_PARAMS = frozenset({"fbclid", "gclid", "mc_cid", "mc_eid", "ref", "ref_src"})


def collapse_whitespace(text: str | None) -> str:
    """Collapse runs of whitespace to single spaces and strip the ends."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def normalize_url(url: str | None) -> str | None:
    """Normalize an article URL for use as an identity key.

    Lower-cases scheme and host, drops default ports, fragments and
    tracking parameters, sorts the query and trims a trailing slash.

    Returns:
        The normalized URL, or None if the URL is empty or not http(s)
    """
    if not url or not url.strip():
        return None
    try:
        parts = urlsplit(url.strip())
        port = parts.port
    except ValueError:
        return None
    scheme = parts.scheme.lower()
    if scheme not in _DEFAULT_PORTS or not parts.hostname:
        return None

    host = parts.hostname.lower()
    if port is not None and port != _DEFAULT_PORTS[scheme]:
        host = f"{host}:{port}"

    path = parts.path or "/"
    if len(path) > 1:
        path = path.rstrip("/")

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not key.lower().startswith("utm_") and key.lower() not in _TRACKING_PARAMS
    ]
    query = urlencode(sorted(query_pairs))
    return urlunsplit((scheme, host, path, query, ""))


def content_fingerprint(title: str | None, body: str | None) -> str:
    """SHA-256 over whitespace-collapsed, case-preserved title and body."""
    projection = f"{collapse_whitespace(title)}\n{collapse_whitespace(body)}"
    return hashlib.sha256(projection.encode("utf-8")).hexdigest()


def identify(item: RawItem) -> ContentIdentity:
    """Compute the identity key and fingerprint of a raw item.

    Args:
        item: The raw item from the feed reader

    Returns:
        ContentIdentity keyed by GUID when present, else by normalized URL

    Raises:
        MalformedItem: If the item has no GUID and no usable URL
    """
    url = normalize_url(item.url)
    guid = (item.guid or "").strip()
    fingerprint = content_fingerprint(item.title, item.content)
    if guid:
        return ContentIdentity(key=guid, fingerprint=fingerprint, key_source="guid", url=url or "")
    if url:
        return ContentIdentity(key=url, fingerprint=fingerprint, key_source="url", url=url)
    raise MalformedItem(f"Item has no GUID and no usable URL: title={item.title!r}")
