"""Tests for the Typer command-line interface."""

from __future__ import annotations

from typer.testing import CliRunner

from feed_tracker.cli import app
from feed_tracker.config import DatabaseConfig
from feed_tracker.core.identity import identify
from feed_tracker.core.types import RawItem
from feed_tracker.storage.store import Store

runner = CliRunner()


def _write_config(tmp_path, extra: str = "") -> tuple[str, str]:
    db_url = f"sqlite:///{tmp_path / 'cli.db'}"
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        f"  url: {db_url}\n"
        "feeds:\n"
        "  - url: https://a.example/rss\n"
        "    name: A\n" + extra,
        encoding="utf-8",
    )
    return str(path), db_url


def test_init_db_registers_feeds_and_seeds_tags(tmp_path):
    config, db_url = _write_config(tmp_path)

    result = runner.invoke(app, ["init-db", "--config", config])

    assert result.exit_code == 0, result.output
    store = Store(DatabaseConfig(url=db_url))
    try:
        assert [feed.feed_url for feed in store.list_feeds()] == ["https://a.example/rss"]
        assert "llm" in store.load_taxonomy()
    finally:
        store.close()


def test_invalid_config_exits_with_code_2(tmp_path):
    config, _ = _write_config(tmp_path, "summary:\n  mode: essay\n")

    result = runner.invoke(app, ["status", "--config", config])

    assert result.exit_code == 2


def test_status_runs_on_fresh_database(tmp_path):
    config, _ = _write_config(tmp_path)

    result = runner.invoke(app, ["status", "--tags", "--config", config])

    assert result.exit_code == 0, result.output
    assert "Feeds" in result.output


def test_set_tag_parent_rejects_cycles(tmp_path):
    config, db_url = _write_config(tmp_path)
    assert runner.invoke(app, ["init-db", "--config", config]).exit_code == 0

    first = runner.invoke(app, ["set-tag-parent", "ai-agents", "llm", "--config", config])
    cycle = runner.invoke(app, ["set-tag-parent", "llm", "ai-agents", "--config", config])
    unknown = runner.invoke(app, ["set-tag-parent", "no-such-tag", "--config", config])

    assert first.exit_code == 0
    assert cycle.exit_code == 0
    assert "Rejected" in cycle.output
    assert "Unknown tag" in unknown.output

    store = Store(DatabaseConfig(url=db_url))
    try:
        taxonomy = store.load_taxonomy()
        assert taxonomy.lookup("ai-agents").parent_id == taxonomy.lookup("llm").tag_id
        assert taxonomy.lookup("llm").parent_id is None
    finally:
        store.close()


def test_status_lists_failed_articles(tmp_path):
    config, db_url = _write_config(tmp_path)
    assert runner.invoke(app, ["init-db", "--config", config]).exit_code == 0
    store = Store(DatabaseConfig(url=db_url))
    try:
        feed_id = store.list_feeds()[0].id
        item = RawItem(guid="g-1", title="Broken", url="https://example.com/1", content="Body")
        article_id = store.insert_article(feed_id, item, identify(item))
        store.fail_article(article_id, store.claim_article(article_id), "boom")
    finally:
        store.close()

    result = runner.invoke(app, ["status", "--failed", "--config", config])

    assert result.exit_code == 0, result.output
    assert "Failed articles" in result.output
    assert "boom" in result.output
