"""Parsing of model output into structured values."""

from __future__ import annotations

import json
from typing import Any


def parse_json_response(content: str) -> Any:
    """Parse JSON from model output, tolerating code fences and chatter."""
    if not content or not content.strip():
        raise json.JSONDecodeError("Empty content", content or "", 0)
    try:
        return json.loads(content)
    except json.JSONDecodeError:
        return json.loads(_extract_json_snippet(content))


def parse_tag_payload(content: str) -> list[tuple[str, Any]]:
    """Extract (label, confidence) pairs from a tagging response.

    Accepts ``{"tags": [{"label": ..., "confidence": ...}]}`` as well as a
    bare list of such objects. Confidence values are passed through
    unvalidated; tag resolution clamps or drops them.

    Raises:
        ValueError: If the payload does not have the expected shape
    """
    data = parse_json_response(content)
    if isinstance(data, dict):
        data = data.get("tags")
    if not isinstance(data, list):
        raise ValueError("Tag response does not contain a tags list")
    pairs: list[tuple[str, Any]] = []
    for entry in data:
        if not isinstance(entry, dict):
            continue
        label = entry.get("label") or entry.get("name")
        if not isinstance(label, str) or not label.strip():
            continue
        pairs.append((label.strip(), entry.get("confidence")))
    return pairs


def _extract_json_snippet(content: str) -> str:
    fence = _extract_fenced_json(content)
    if fence:
        return fence
    start = min((i for i in (content.find("{"), content.find("[")) if i != -1), default=-1)
    end = max(content.rfind("}"), content.rfind("]"))
    if start == -1 or end <= start:
        raise json.JSONDecodeError("No JSON value found", content, 0)
    return content[start : end + 1]


def _extract_fenced_json(content: str) -> str | None:
    lines = content.splitlines()
    start_idx = None
    for idx, line in enumerate(lines):
        if line.strip().startswith("```"):
            start_idx = idx + 1
            break
    if start_idx is None:
        return None
    for idx in range(start_idx, len(lines)):
        if lines[idx].strip().startswith("```"):
            snippet = "\n".join(lines[start_idx:idx]).strip()
            return snippet or None
    return None
