"""
Confidence-scored tag resolution against the canonical taxonomy.

The taxonomy is closed: labels returned by the tagger that do not match an
existing tag (case-insensitive, exact) are dropped, never created. Parent
tags are only assigned when the tagger returns them explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Any, Iterable

from .errors import TaxonomyCycleError
from .types import ResolvedTag


@dataclass(frozen=True)
class TagNode:
    """A canonical tag as seen by the resolver."""
    tag_id: int
    name: str
    category: str
    parent_id: int | None = None


class TagTaxonomy:
    """In-memory view of the tag forest used for lookup and cycle checks."""

    def __init__(self, nodes: Iterable[TagNode]):
        self._by_id: dict[int, TagNode] = {}
        self._by_name: dict[str, TagNode] = {}
        for node in nodes:
            self._by_id[node.tag_id] = node
            self._by_name[node.name.strip().lower()] = node

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, label: object) -> bool:
        return isinstance(label, str) and self.lookup(label) is not None

    @property
    def labels(self) -> list[str]:
        return sorted(node.name for node in self._by_id.values())

    def lookup(self, label: str) -> TagNode | None:
        return self._by_name.get(label.strip().lower())

    def get(self, tag_id: int) -> TagNode | None:
        return self._by_id.get(tag_id)

    def ancestors(self, tag_id: int) -> list[TagNode]:
        """Walk parent links upward. Stops (without raising) on a stored cycle."""
        chain: list[TagNode] = []
        seen = {tag_id}
        node = self._by_id.get(tag_id)
        while node is not None and node.parent_id is not None:
            if node.parent_id in seen:
                break
            seen.add(node.parent_id)
            node = self._by_id.get(node.parent_id)
            if node is not None:
                chain.append(node)
        return chain

    def validate_parent(self, child_id: int, parent_id: int | None) -> None:
        """Reject a parent edge that would make the hierarchy cyclic.

        Raises:
            TaxonomyCycleError: If ``parent_id`` is ``child_id`` or one of its descendants
        """
        if parent_id is None:
            return
        if child_id == parent_id:
            raise TaxonomyCycleError(f"Tag {child_id} cannot be its own parent")
        if any(node.tag_id == child_id for node in self.ancestors(parent_id)):
            raise TaxonomyCycleError(
                f"Setting parent {parent_id} on tag {child_id} would create a cycle"
            )


def resolve_tags(
    pairs: Iterable[tuple[Any, Any]],
    taxonomy: TagTaxonomy,
    min_confidence: float = 0.3,
    max_tags: int = 10,
) -> list[ResolvedTag]:
    """Turn raw (label, confidence) pairs into validated tag assignments.

    Steps: match labels against the taxonomy, clamp confidence into [0, 1],
    keep the best score per tag, drop scores below ``min_confidence`` and
    keep at most ``max_tags`` of the highest-confidence tags.

    Args:
        pairs: Raw output of the tagging service
        taxonomy: The canonical tag taxonomy
        min_confidence: Minimum confidence to keep a tag
        max_tags: Maximum number of tags returned

    Returns:
        Resolved tags ordered by descending confidence, then name
    """
    best: dict[int, ResolvedTag] = {}
    for label, raw_confidence in pairs:
        if not isinstance(label, str):
            continue
        node = taxonomy.lookup(label)
        if node is None:
            continue
        confidence = _clamp_confidence(raw_confidence)
        if confidence is None or confidence < min_confidence:
            continue
        current = best.get(node.tag_id)
        if current is None or confidence > current.confidence:
            best[node.tag_id] = ResolvedTag(tag_id=node.tag_id, name=node.name, confidence=confidence)

    ranked = sorted(best.values(), key=lambda tag: (-tag.confidence, tag.name))
    return ranked[:max_tags]


def _clamp_confidence(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number):
        return None
    return min(1.0, max(0.0, number))
