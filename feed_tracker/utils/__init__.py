"""
Shared utility functions.

This package contains logging and time helpers used across the
pipeline stages.
"""

from .logging import (
    JsonlFormatter,
    log_event,
    redact_text,
    setup_llm_logger,
    setup_logging,
    truncate_text,
)
from .time import to_naive_utc, utc_now

__all__ = [
    "setup_logging",
    "setup_llm_logger",
    "log_event",
    "redact_text",
    "truncate_text",
    "JsonlFormatter",
    "utc_now",
    "to_naive_utc",
]
