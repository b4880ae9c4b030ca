"""Tests for YAML configuration loading and validation."""

from __future__ import annotations

import pytest

from feed_tracker.config import AppConfig, ProviderConfig, config_from_dict, get_api_key, load_config
from feed_tracker.core.errors import ConfigError


def test_load_config_defaults_without_path():
    cfg = load_config(None)
    assert isinstance(cfg, AppConfig)
    assert cfg.retry.max_attempts == 3
    assert cfg.queue.summarize_concurrency == 5
    assert cfg.queue.tag_concurrency == 10
    assert cfg.tagging.min_confidence == 0.3
    assert cfg.pipeline.article_timeout_seconds == 60.0


def test_load_config_reads_sections_and_feeds(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "database:\n"
        "  url: sqlite:///custom.db\n"
        "queue:\n"
        "  workers: 2\n"
        "  not_a_field: ignored\n"
        "feeds:\n"
        "  - url: https://a.example/rss\n"
        "    name: A\n"
        "    priority: HIGH\n"
        "    fetch_interval: 1800\n"
        "  - url: https://b.example/rss\n",
        encoding="utf-8",
    )

    cfg = load_config(str(path))

    assert cfg.database.url == "sqlite:///custom.db"
    assert cfg.queue.workers == 2
    assert [feed.priority for feed in cfg.feeds] == ["high", "medium"]
    assert cfg.feeds[0].fetch_interval == 1800
    assert cfg.feeds[1].name == "https://b.example/rss"


@pytest.mark.parametrize(
    "raw",
    [
        {"summary": {"mode": "essay"}},
        {"tagging": {"min_confidence": 1.5}},
        {"retry": {"max_attempts": 0}},
        {"queue": {"workers": 0}},
        {"feeds": [{"name": "no url"}]},
        {"feeds": [{"url": "https://a.example/rss", "priority": "urgent"}]},
        {"feeds": [{"url": "https://a.example/rss"}, {"url": "https://a.example/rss"}]},
        {"queue": ["not", "a", "mapping"]},
    ],
)
def test_invalid_values_raise_config_error(raw):
    with pytest.raises(ConfigError):
        config_from_dict(raw)


def test_non_mapping_root_is_rejected(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(str(path))


def test_get_api_key_prefers_inline_value(monkeypatch):
    monkeypatch.setenv("TEST_LLM_KEY", "from-env")
    assert get_api_key(ProviderConfig(api_key_env="TEST_LLM_KEY")) == "from-env"
    assert get_api_key(ProviderConfig(api_key="inline", api_key_env="TEST_LLM_KEY")) == "inline"
