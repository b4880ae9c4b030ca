"""Tests for content normalization and logging helpers."""

from __future__ import annotations

import json
import logging

from feed_tracker.config import LoggingConfig
from feed_tracker.pipeline.text import html_to_text
from feed_tracker.utils.logging import (
    JsonlFormatter,
    log_event,
    redact_text,
    setup_llm_logger,
    truncate_text,
)


def test_html_to_text_drops_markup_and_scripts():
    html = "<p>Hello   <b>world</b></p><script>var x = 1;</script><p>\n\nSecond</p>"
    assert html_to_text(html) == "Hello\nworld\nSecond"


def test_html_to_text_empty_inputs():
    assert html_to_text(None) == ""
    assert html_to_text("   ") == ""
    assert html_to_text("<style>p { color: red }</style>") == ""


def test_redact_and_truncate():
    text = "see https://example.com/a for details"
    assert redact_text(text, "redact_urls_authors") == "see [REDACTED_URL] for details"
    assert redact_text(text, "redact_content") == ""
    assert redact_text(text, "none") == text
    assert truncate_text("abcdef", 3) == "abc...(truncated)"


def test_jsonl_formatter_includes_extra_fields():
    record = logging.LogRecord("feed_tracker.test", logging.INFO, __file__, 1, "hello", None, None)
    record.event = "cycle_start"
    record.force = True

    payload = json.loads(JsonlFormatter().format(record))

    assert payload["message"] == "hello"
    assert payload["event"] == "cycle_start"
    assert payload["force"] is True
    assert payload["level"] == "INFO"


def test_llm_logger_writes_jsonl(tmp_path):
    assert setup_llm_logger(LoggingConfig()) is None

    cfg = LoggingConfig(llm_log_enabled=True, directory=str(tmp_path))
    llm_logger = setup_llm_logger(cfg)
    log_event(llm_logger, "LLM response", event="llm_summarize", status="ok")
    for handler in llm_logger.handlers:
        handler.flush()
        handler.close()
    llm_logger.handlers = []

    line = (tmp_path / "llm.jsonl").read_text(encoding="utf-8").strip()
    assert json.loads(line)["event"] == "llm_summarize"
