"""Tests for confidence-scored tag resolution and taxonomy validation."""

from __future__ import annotations

import pytest

from feed_tracker.core.errors import TaxonomyCycleError
from feed_tracker.core.tags import TagNode, TagTaxonomy, resolve_tags


def _taxonomy() -> TagTaxonomy:
    return TagTaxonomy(
        [
            TagNode(1, "ai-tools", "topic"),
            TagNode(2, "ai-trends", "topic"),
            TagNode(3, "llm", "topic", parent_id=2),
            TagNode(4, "finance", "industry"),
        ]
    )


def test_unknown_and_low_confidence_labels_are_dropped():
    pairs = [("ai-tools", 0.9), ("unknown-label", 0.95), ("ai-trends", 0.2)]
    resolved = resolve_tags(pairs, _taxonomy())
    assert [(tag.name, tag.confidence) for tag in resolved] == [("ai-tools", 0.9)]


def test_labels_match_case_insensitively_and_keep_best_score():
    resolved = resolve_tags([("AI-Tools", 0.5), ("ai-tools ", 0.8)], _taxonomy())
    assert len(resolved) == 1
    assert resolved[0].tag_id == 1
    assert resolved[0].confidence == 0.8


def test_confidence_is_clamped_and_invalid_values_dropped():
    pairs = [
        ("ai-tools", 1.7),
        ("llm", float("nan")),
        ("finance", "high"),
        ("ai-trends", True),
    ]
    resolved = resolve_tags(pairs, _taxonomy())
    assert [(tag.name, tag.confidence) for tag in resolved] == [("ai-tools", 1.0)]


def test_results_ordered_and_truncated():
    pairs = [("finance", 0.6), ("llm", 0.9), ("ai-tools", 0.6), ("ai-trends", 0.4)]
    resolved = resolve_tags(pairs, _taxonomy(), max_tags=3)
    assert [tag.name for tag in resolved] == ["llm", "ai-tools", "finance"]


def test_parent_is_not_implied():
    resolved = resolve_tags([("llm", 0.9)], _taxonomy())
    assert [tag.name for tag in resolved] == ["llm"]


def test_validate_parent_rejects_cycles():
    taxonomy = _taxonomy()
    with pytest.raises(TaxonomyCycleError):
        taxonomy.validate_parent(2, 3)
    with pytest.raises(TaxonomyCycleError):
        taxonomy.validate_parent(1, 1)
    taxonomy.validate_parent(1, 2)
    taxonomy.validate_parent(3, None)


def test_taxonomy_lookup_and_labels():
    taxonomy = _taxonomy()
    assert "LLM" in taxonomy
    assert "nope" not in taxonomy
    assert taxonomy.labels == ["ai-tools", "ai-trends", "finance", "llm"]
    assert [node.name for node in taxonomy.ancestors(3)] == ["ai-trends"]
