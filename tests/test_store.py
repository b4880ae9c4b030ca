"""Tests for claims, status transitions, tag counters and feed bookkeeping in the store."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from feed_tracker.core.errors import ClaimConflict, FetchError, TaxonomyCycleError
from feed_tracker.core.identity import identify
from feed_tracker.core.types import RawItem, ResolvedTag, SummaryResult
from feed_tracker.storage.models import Tag
from feed_tracker.utils.time import utc_now


def _add_article(store, feed_id: int, guid: str = "g-1", content: str = "Body") -> int:
    item = RawItem(guid=guid, title=f"Title {guid}", url=f"https://example.com/{guid}", content=content)
    return store.insert_article(feed_id, item, identify(item))


def _tags(store, *names: str) -> list[ResolvedTag]:
    taxonomy = store.load_taxonomy()
    return [ResolvedTag(taxonomy.lookup(name).tag_id, name, 0.8) for name in names]


def _assert_counters_match(store) -> None:
    assert store.verify_usage_counts() == []


def test_init_schema_seeds_starter_taxonomy_once(store):
    assert len(store.load_taxonomy()) == 16
    assert store.seed_tags() == 0


def test_insert_article_returns_none_on_duplicate_guid(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    assert _add_article(store, feed_id) is not None
    assert _add_article(store, feed_id) is None


def test_only_one_claim_wins(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)

    token = store.claim_article(article_id)
    with pytest.raises(ClaimConflict):
        store.claim_article(article_id)

    article = store.get_article(article_id)
    assert article.processing_status == "processing"
    assert article.claim_token == token


def test_writes_with_stale_token_are_refused(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)
    store.claim_article(article_id)

    with pytest.raises(ClaimConflict):
        store.save_summary(article_id, "bogus", SummaryResult("s", 1, "m", 1), "brief", None)
    with pytest.raises(ClaimConflict):
        store.complete_article(article_id, "bogus")
    assert store.get_summary(article_id) is None


def test_tag_replacement_keeps_counters_exact(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    first = _add_article(store, feed_id, "g-1")
    second = _add_article(store, feed_id, "g-2")

    token = store.claim_article(first)
    assert store.replace_article_tags(first, token, _tags(store, "llm", "ai-tools")) == (2, 0)
    assert store.replace_article_tags(first, token, _tags(store, "llm", "finance")) == (1, 1)
    store.complete_article(first, token)

    token = store.claim_article(second)
    store.replace_article_tags(second, token, _tags(store, "llm"))
    store.complete_article(second, token)

    counts = store.usage_counts()
    assert counts["llm"] == 2
    assert counts["finance"] == 1
    assert counts["ai-tools"] == 0
    _assert_counters_match(store)


def test_verify_usage_counts_corrects_drift(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)
    token = store.claim_article(article_id)
    store.replace_article_tags(article_id, token, _tags(store, "llm"))

    with store.session() as session:
        tag = session.query(Tag).filter(Tag.tag_name == "llm").one()
        tag.usage_count = 7

    drifts = store.verify_usage_counts()
    assert [(d.tag_name, d.stored, d.actual) for d in drifts] == [("llm", 7, 1)]
    assert store.usage_counts()["llm"] == 1


def test_delete_feed_cascades_and_decrements_counters(store):
    keep = store.add_feed("https://a.example/rss", "A")
    drop = store.add_feed("https://b.example/rss", "B")
    kept_article = _add_article(store, keep, "a-1")
    dropped_article = _add_article(store, drop, "b-1")
    for article_id in (kept_article, dropped_article):
        token = store.claim_article(article_id)
        store.save_summary(article_id, token, SummaryResult("s", 1, "m", 1), "brief", None)
        store.replace_article_tags(article_id, token, _tags(store, "llm"))
        store.complete_article(article_id, token)

    assert store.delete_feed(drop) is True

    assert store.get_article(dropped_article) is None
    assert store.get_summary(dropped_article) is None
    assert store.get_article(kept_article) is not None
    assert store.usage_counts()["llm"] == 1
    _assert_counters_match(store)


def test_release_with_attempts_fails_at_ceiling(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)

    for expected in (1, 2):
        token = store.claim_article(article_id)
        result = store.release_claim(article_id, token, increment_attempts=True, reason="timeout", max_attempts=3)
        assert result.status.value == "pending"
        assert result.attempts == expected

    token = store.claim_article(article_id)
    result = store.release_claim(article_id, token, increment_attempts=True, reason="timeout", max_attempts=3)
    assert result.status.value == "failed"
    assert store.get_article(article_id).last_error == "timeout"


def test_expire_stale_claims(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)
    store.claim_article(article_id)

    assert store.expire_stale_claims(utc_now() - timedelta(minutes=5), max_attempts=3) == (0, 0)
    assert store.expire_stale_claims(utc_now() + timedelta(seconds=1), max_attempts=3) == (1, 0)

    article = store.get_article(article_id)
    assert article.processing_status == "pending"
    assert article.processing_attempts == 1
    assert article.claim_token is None


def test_requeue_failed_keeps_attempts(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    article_id = _add_article(store, feed_id)
    token = store.claim_article(article_id)
    store.record_attempt_failure(article_id, token, "boom")
    store.fail_article(article_id, token, "gave up")

    refs = store.requeue_failed()

    assert [ref.article_id for ref in refs] == [article_id]
    article = store.get_article(article_id)
    assert article.processing_status == "pending"
    assert article.processing_attempts == 1
    assert store.requeue_failed() == []


def test_feed_failures_deactivate_at_threshold(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    error = FetchError(FetchError.UNREACHABLE, "connection refused")

    assert store.record_feed_failure(feed_id, error, error_threshold=2) is False
    assert store.record_feed_failure(feed_id, error, error_threshold=2) is True
    assert store.get_feed(feed_id).is_active is False
    assert store.due_feeds(force=True) == []

    assert store.reactivate_feed(feed_id) is True
    feed = store.get_feed(feed_id)
    assert feed.is_active is True
    assert feed.error_count == 0


def test_rate_limit_postpones_without_counting(store):
    feed_id = store.add_feed("https://a.example/rss", "A")
    now = datetime(2025, 3, 1, 12, 0)

    deactivated = store.record_feed_failure(
        feed_id, FetchError(FetchError.RATE_LIMITED, "HTTP 429", retry_after=600), 1, now=now
    )

    assert deactivated is False
    feed = store.get_feed(feed_id)
    assert feed.error_count == 0
    assert feed.retry_after == now + timedelta(seconds=600)
    assert store.due_feeds(now + timedelta(seconds=300)) == []
    assert [f.id for f in store.due_feeds(now + timedelta(seconds=601))] == [feed_id]


def test_set_tag_parent_rejects_cycles(store):
    store.set_tag_parent("llm", "ai-trends")
    store.set_tag_parent("ai-trends", "technology")

    with pytest.raises(TaxonomyCycleError):
        store.set_tag_parent("technology", "llm")
    with pytest.raises(KeyError):
        store.set_tag_parent("llm", "missing")

    taxonomy = store.load_taxonomy()
    llm = taxonomy.lookup("llm")
    assert [node.name for node in taxonomy.ancestors(llm.tag_id)] == ["ai-trends", "technology"]


def test_add_tag_extends_taxonomy_under_parent(store):
    tag_id = store.add_tag("openai", "entity", description="OpenAI", parent="llm")

    taxonomy = store.load_taxonomy()
    node = taxonomy.lookup("OpenAI")
    assert node.tag_id == tag_id
    assert node.category == "entity"
    assert node.parent_id == taxonomy.lookup("llm").tag_id
    assert "openai" in taxonomy.labels


def test_feed_stats_and_tag_popularity(store):
    feed_id = store.add_feed("https://a.example/rss", "A", category="news")
    article_id = _add_article(store, feed_id)
    _add_article(store, feed_id, "g-2")
    token = store.claim_article(article_id)
    store.replace_article_tags(article_id, token, _tags(store, "llm"))
    store.complete_article(article_id, token)

    (row,) = store.feed_stats()
    assert row["total_articles"] == 2
    assert row["processed_articles"] == 1
    assert row["pending_articles"] == 1

    popularity = {row["tag_name"]: row for row in store.tag_popularity()}
    assert popularity["llm"]["usage_count"] == 1
    assert popularity["llm"]["article_count"] == 1
    assert popularity["llm"]["avg_confidence"] == pytest.approx(0.8)


def test_articles_full_lists_failures_with_feed_context(store):
    feed_id = store.add_feed("https://a.example/rss", "A", category="news")
    done = _add_article(store, feed_id, "g-1")
    broken = _add_article(store, feed_id, "g-2")
    token = store.claim_article(done)
    store.save_summary(done, token, SummaryResult("s", 1, "m", 1), "brief", None)
    store.replace_article_tags(done, token, _tags(store, "llm", "finance"))
    store.complete_article(done, token)
    token = store.claim_article(broken)
    store.record_attempt_failure(broken, token, "HTTP 503")
    store.fail_article(broken, token, "HTTP 503")

    rows = {row["id"]: row for row in store.articles_full()}
    assert rows[done]["summary_text"] == "s"
    assert rows[done]["tag_count"] == 2
    assert rows[done]["feed_name"] == "A"

    (failed,) = store.articles_full(status="failed")
    assert failed["id"] == broken
    assert failed["last_error"] == "HTTP 503"
    assert failed["processing_attempts"] == 1
    assert failed["feed_category"] == "news"
    assert failed["summary_text"] is None
    assert failed["tag_count"] == 0
    assert len(store.articles_full(limit=1)) == 1
