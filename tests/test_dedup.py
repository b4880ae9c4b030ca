"""Tests for item classification: new, unchanged, updated and cross-source duplicates."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from feed_tracker.core.dedup import DedupEngine, StoredFingerprint, is_cross_source_duplicate
from feed_tracker.core.errors import ClaimConflict
from feed_tracker.core.identity import identify
from feed_tracker.core.types import DedupOutcome, RawItem, ResolvedTag, SummaryResult


T0 = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
TITLE = "OpenAI releases new model for coding agents"


def _item(guid: str, title: str = TITLE, content: str = "Body", published: datetime | None = T0) -> RawItem:
    return RawItem(
        guid=guid,
        title=title,
        url=f"https://example.com/{guid}",
        content=content,
        published_at=published,
    )


def _ingest(engine: DedupEngine, feed_id: int, item: RawItem):
    return engine.ingest(feed_id, item, identify(item))


def test_refetch_of_identical_item_is_unchanged(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    engine = DedupEngine(store)

    first = _ingest(engine, feed_id, _item("g-1"))
    second = _ingest(engine, feed_id, _item("g-1"))

    assert first.outcome is DedupOutcome.NEW
    assert second.outcome is DedupOutcome.UNCHANGED
    assert second.article_id == first.article_id
    assert store.status_counts()["pending"] == 1


def test_changed_content_updates_in_place(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    engine = DedupEngine(store)
    article_id = _ingest(engine, feed_id, _item("g-1")).article_id

    token = store.claim_article(article_id)
    store.save_summary(article_id, token, SummaryResult("Old summary", 2, "stub:model", 5), "brief", None)
    store.complete_article(article_id, token)

    decision = _ingest(engine, feed_id, _item("g-1", content="Body, corrected"))

    assert decision.outcome is DedupOutcome.UPDATED
    assert decision.article_id == article_id
    article = store.get_article(article_id)
    assert article.processing_status == "pending"
    assert article.content == "Body, corrected"
    assert store.get_summary(article_id).is_stale is True
    assert store.status_counts()["pending"] == 1


def test_cross_source_duplicate_is_linked_not_inserted(store):
    feed_a = store.add_feed("https://a.example/rss", "A")
    feed_b = store.add_feed("https://b.example/rss", "B")
    engine = DedupEngine(store)
    original = _ingest(engine, feed_a, _item("a-1"))

    duplicate = _ingest(
        engine,
        feed_b,
        _item("b-1", title="OpenAI Releases New Model for Coding Agents", published=T0 + timedelta(hours=2)),
    )
    again = _ingest(engine, feed_b, _item("b-1", title=TITLE, published=T0 + timedelta(hours=2)))

    assert duplicate.outcome is DedupOutcome.DUPLICATE
    assert duplicate.article_id == original.article_id
    assert duplicate.similarity >= 92
    assert again.outcome is DedupOutcome.UNCHANGED
    assert sum(store.status_counts().values()) == 1


def test_update_keeps_tags_until_retagging(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    engine = DedupEngine(store)
    article_id = _ingest(engine, feed_id, _item("g-1")).article_id
    llm = store.load_taxonomy().lookup("llm")

    token = store.claim_article(article_id)
    store.replace_article_tags(article_id, token, [ResolvedTag(llm.tag_id, "llm", 0.8)])
    store.complete_article(article_id, token)

    decision = _ingest(engine, feed_id, _item("g-1", content="Body, corrected"))

    assert decision.outcome is DedupOutcome.UPDATED
    assert store.article_tags(article_id) == [("llm", 0.8)]
    assert store.usage_counts()["llm"] == 1
    assert store.verify_usage_counts() == []


def test_update_revokes_claim_of_running_worker(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    engine = DedupEngine(store)
    article_id = _ingest(engine, feed_id, _item("g-1")).article_id
    token = store.claim_article(article_id)

    decision = _ingest(engine, feed_id, _item("g-1", content="Body, corrected"))

    assert decision.outcome is DedupOutcome.UPDATED
    assert store.get_article(article_id).processing_status == "pending"
    with pytest.raises(ClaimConflict):
        store.save_summary(article_id, token, SummaryResult("Stale", 1, "stub:model", 5), "brief", None)
    with pytest.raises(ClaimConflict):
        store.replace_article_tags(article_id, token, [])
    with pytest.raises(ClaimConflict):
        store.complete_article(article_id, token)
    assert store.get_summary(article_id) is None


def test_earlier_report_arriving_late_leads_the_article(store):
    feed_a = store.add_feed("https://a.example/rss", "A")
    feed_b = store.add_feed("https://b.example/rss", "B")
    engine = DedupEngine(store)
    later_item = _item("b-1", content="Body B", published=T0 + timedelta(hours=3))
    later = _ingest(engine, feed_b, later_item)
    token = store.claim_article(later.article_id)
    store.save_summary(later.article_id, token, SummaryResult("B summary", 2, "stub:model", 5), "brief", None)
    store.complete_article(later.article_id, token)

    earlier_item = _item("a-1", content="Body A")
    earlier = _ingest(engine, feed_a, earlier_item)

    assert earlier.outcome is DedupOutcome.DUPLICATE
    assert earlier.article_id == later.article_id
    article = store.get_article(later.article_id)
    assert article.guid == "a-1"
    assert article.feed_id == feed_a
    assert article.published_date == datetime(2025, 3, 1, 12, 0)
    assert article.content == "Body A"
    assert article.processing_status == "pending"
    assert store.get_summary(later.article_id).is_stale is True
    assert store.find_secondary_source("b-1") == later.article_id

    assert _ingest(engine, feed_b, later_item).outcome is DedupOutcome.UNCHANGED
    assert _ingest(engine, feed_a, earlier_item).outcome is DedupOutcome.UNCHANGED
    assert sum(store.status_counts().values()) == 1


def test_cross_source_matching_is_conservative(store):
    feed_a = store.add_feed("https://a.example/rss", "A")
    feed_b = store.add_feed("https://b.example/rss", "B")
    engine = DedupEngine(store)
    _ingest(engine, feed_a, _item("a-1"))
    _ingest(engine, feed_a, _item("a-2", title="Big news today"))

    outside_window = _ingest(engine, feed_b, _item("b-1", published=T0 + timedelta(hours=13)))
    short_title = _ingest(engine, feed_b, _item("b-2", title="Big news today"))
    no_timestamp = _ingest(engine, feed_b, _item("b-3", published=None))
    same_feed = _ingest(engine, feed_a, _item("a-3"))

    assert outside_window.outcome is DedupOutcome.NEW
    assert short_title.outcome is DedupOutcome.NEW
    assert no_timestamp.outcome is DedupOutcome.NEW
    assert same_feed.outcome is DedupOutcome.NEW


def test_cross_source_matching_can_be_disabled(store):
    feed_a = store.add_feed("https://a.example/rss", "A")
    feed_b = store.add_feed("https://b.example/rss", "B")
    engine = DedupEngine(store, enabled=False)
    _ingest(engine, feed_a, _item("a-1"))
    assert _ingest(engine, feed_b, _item("b-1")).outcome is DedupOutcome.NEW


def test_is_cross_source_duplicate_thresholds():
    later = T0 + timedelta(hours=1)
    assert is_cross_source_duplicate(TITLE, T0, TITLE, later) == 100
    assert is_cross_source_duplicate(TITLE, T0, "Completely different headline about markets", later) is None
    assert is_cross_source_duplicate(TITLE, T0, TITLE, None) is None


class _RacingIndex:
    """Index whose insert loses to a concurrent writer of the same GUID."""

    def __init__(self, stored_hash: str):
        self.stored_hash = stored_hash
        self.calls = 0
        self.updated = False

    def get_fingerprint(self, guid):  # noqa: ANN001
        self.calls += 1
        if self.calls == 1:
            return None
        return StoredFingerprint(article_id=42, content_hash=self.stored_hash)

    def find_secondary_source(self, guid):  # noqa: ANN001
        return None

    def recent_titles(self, start, end, exclude_feed_id):  # noqa: ANN001
        return []

    def insert_article(self, feed_id, item, identity):  # noqa: ANN001
        return None

    def update_article_content(self, article_id, item, identity):  # noqa: ANN001
        self.updated = True
        return True

    def add_secondary_source(self, article_id, feed_id, item, identity):  # noqa: ANN001
        raise AssertionError("not expected")

    def promote_source(self, article_id, feed_id, item, identity):  # noqa: ANN001
        raise AssertionError("not expected")


def test_insert_race_resolves_to_existing_article():
    item = _item("g-1")
    identity = identify(item)

    same = DedupEngine(_RacingIndex(identity.fingerprint)).ingest(1, item, identity)
    assert same.outcome is DedupOutcome.UNCHANGED
    assert same.article_id == 42

    index = _RacingIndex("other-hash")
    changed = DedupEngine(index).ingest(1, item, identity)
    assert changed.outcome is DedupOutcome.UPDATED
    assert index.updated is True
