"""
Configuration management using YAML files and dataclasses.

This module defines all configuration dataclasses and provides loading
from YAML files with defaults. Configuration sections:
- DatabaseConfig: SQLAlchemy connection settings
- FetchConfig: Feed fetching and feed deactivation settings
- DedupConfig: Cross-source duplicate detection settings
- SummaryConfig: Summarization request settings
- TaggingConfig: Tagging request and tag resolution settings
- QueueConfig: Worker count, concurrency caps and fairness settings
- RetryConfig: Attempt ceiling and backoff settings
- PipelineConfig: Per-article wall-clock and claim expiry settings
- ProviderConfig: LLM provider settings
- LoggingConfig: Logging behavior
- LangfuseConfig: Langfuse tracing settings
- FeedConfig: A monitored feed declared in configuration
- AppConfig: Root configuration container
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
import os
from typing import Any

import yaml

from .core.errors import ConfigError
from .core.types import Priority, SummaryMode


@dataclass
class DatabaseConfig:
    """Configuration for the persistent store.

    Attributes:
        url: SQLAlchemy database URL
        echo: Whether SQLAlchemy should log emitted SQL
        seed_tags: Whether to insert the starter tag taxonomy on init
    """

    url: str = "sqlite:///feed_tracker.db"
    echo: bool = False
    seed_tags: bool = True


@dataclass
class FetchConfig:
    """Configuration for feed fetching.

    Attributes:
        timeout_seconds: HTTP request timeout
        concurrency: Number of feeds fetched at the same time
        trust_env: Whether to respect system proxy settings
        user_agent: HTTP User-Agent header string
        error_threshold: Consecutive errors after which a feed is deactivated
        default_retry_after: Seconds to wait after a rate limit without Retry-After
    """

    timeout_seconds: float = 20.0
    concurrency: int = 8
    trust_env: bool = True
    user_agent: str = "feed-tracker/0.1 (+https://github.com/feed-tracker)"
    error_threshold: int = 5
    default_retry_after: float = 900.0


@dataclass
class DedupConfig:
    """Configuration for cross-source duplicate detection.

    Attributes:
        enabled: Whether to look for cross-source duplicates at all
        title_similarity_threshold: Fuzzy match threshold (0-100) for titles
        window_hours: Maximum distance between published timestamps
        min_title_tokens: Titles shorter than this are never merged
    """

    enabled: bool = True
    title_similarity_threshold: int = 92
    window_hours: float = 12.0
    min_title_tokens: int = 4


@dataclass
class SummaryConfig:
    """Configuration for summarization.

    Attributes:
        mode: Summary mode ("brief", "detailed" or "bullet")
        max_chars: Maximum characters of article text sent to the provider
        timeout_seconds: Timeout for a single summarize call
    """

    mode: str = SummaryMode.BRIEF.value
    max_chars: int = 12000
    timeout_seconds: float = 30.0


@dataclass
class TaggingConfig:
    """Configuration for tagging and tag resolution.

    Attributes:
        min_confidence: Tags below this confidence are dropped
        max_tags: Maximum number of tags kept per article
        timeout_seconds: Timeout for a single tag call
    """

    min_confidence: float = 0.3
    max_tags: int = 10
    timeout_seconds: float = 30.0


@dataclass
class QueueConfig:
    """Configuration for the work queue.

    Attributes:
        workers: Number of concurrent pipeline workers
        summarize_concurrency: Maximum concurrent summarize calls
        tag_concurrency: Maximum concurrent tag calls
        starvation_threshold: Dequeues a waiting lower tier may be passed over
        backlog_limit: Pending articles from earlier cycles picked up per cycle
    """

    workers: int = 4
    summarize_concurrency: int = 5
    tag_concurrency: int = 10
    starvation_threshold: int = 5
    backlog_limit: int = 200


@dataclass
class RetryConfig:
    """Configuration for the processing retry policy.

    Attributes:
        max_attempts: Attempt ceiling before an article is marked failed
        backoff_base: First backoff delay in seconds
        backoff_ceiling: Upper bound for a single backoff delay
        jitter: Whether to randomize backoff delays
    """

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_ceiling: float = 30.0
    jitter: bool = True


@dataclass
class PipelineConfig:
    """Configuration for per-article processing bounds.

    Attributes:
        article_timeout_seconds: Wall-clock budget for one article
        claim_ttl_seconds: Age after which a processing claim is considered abandoned
    """

    article_timeout_seconds: float = 60.0
    claim_ttl_seconds: float = 300.0


@dataclass
class ProviderConfig:
    """Configuration for the LLM provider.

    Attributes:
        name: Provider name ("gemini" or "openai_compatible")
        model: Model identifier
        api_key_env: Environment variable name containing the API key
        base_url: Base URL for the provider API
        api_key: Optional inline API key (overrides env var)
        trust_env: Whether to respect system proxy settings for API requests
    """

    name: str = "gemini"
    model: str = "gemini-2.5-flash"
    api_key_env: str = "GOOGLE_API_KEY"
    base_url: str = "https://generativelanguage.googleapis.com"
    api_key: str | None = None
    trust_env: bool = True


@dataclass
class LoggingConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level ("DEBUG", "INFO", "WARNING", "ERROR")
        console: Whether to log to console
        file: Whether to log to file
        format: Log file format ("jsonl" or "plain")
        directory: Directory for log files
        filename: Name of the main log file
        llm_log_enabled: Whether to enable separate LLM interaction logging
        llm_log_detail: LLM log detail level ("summary_only", "response_only", "prompt_response")
        llm_log_redaction: Redaction mode for LLM logs ("none", "redact_content", "redact_urls_authors")
        llm_log_file: Name of the LLM log file
    """

    level: str = "INFO"
    console: bool = True
    file: bool = False
    format: str = "jsonl"
    directory: str = "logs"
    filename: str = "run.jsonl"
    llm_log_enabled: bool = False
    llm_log_detail: str = "response_only"
    llm_log_redaction: str = "redact_urls_authors"
    llm_log_file: str = "llm.jsonl"


@dataclass
class LangfuseConfig:
    """Configuration for Langfuse tracing.

    Attributes:
        enabled: Whether to enable Langfuse tracing
        public_key: Langfuse public key (optional)
        secret_key: Langfuse secret key (optional)
        host: Langfuse host URL (optional)
        redaction: Redaction mode for prompt/response payloads
        max_text_chars: Maximum characters for prompt/response payloads
    """

    enabled: bool = False
    public_key: str | None = None
    secret_key: str | None = None
    host: str | None = None
    redaction: str = "redact_urls_authors"
    max_text_chars: int = 20000


@dataclass
class FeedConfig:
    """A monitored feed declared in configuration.

    Attributes:
        url: Feed URL (unique)
        name: Display name
        category: Optional category label
        fetch_interval: Seconds between fetches
        priority: Queue priority for new items ("high", "medium", "low")
    """

    url: str
    name: str
    category: str | None = None
    fetch_interval: int = 3600
    priority: str = Priority.MEDIUM.value


@dataclass
class AppConfig:
    """Root configuration container aggregating all config sections."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    fetch: FetchConfig = field(default_factory=FetchConfig)
    dedup: DedupConfig = field(default_factory=DedupConfig)
    summary: SummaryConfig = field(default_factory=SummaryConfig)
    tagging: TaggingConfig = field(default_factory=TaggingConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    langfuse: LangfuseConfig = field(default_factory=LangfuseConfig)
    feeds: list[FeedConfig] = field(default_factory=list)


_SECTIONS: dict[str, type] = {
    "database": DatabaseConfig,
    "fetch": FetchConfig,
    "dedup": DedupConfig,
    "summary": SummaryConfig,
    "tagging": TaggingConfig,
    "queue": QueueConfig,
    "retry": RetryConfig,
    "pipeline": PipelineConfig,
    "provider": ProviderConfig,
    "logging": LoggingConfig,
    "langfuse": LangfuseConfig,
}


def load_config(path: str | None) -> AppConfig:
    """Load configuration from a YAML file with defaults."""
    if not path:
        return AppConfig()

    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    if not isinstance(raw, dict):
        raise ConfigError(f"Config root must be a mapping: {path}")
    return config_from_dict(raw)


def config_from_dict(raw: dict[str, Any]) -> AppConfig:
    """Build an AppConfig from a raw mapping, ignoring unknown keys."""
    sections: dict[str, Any] = {}
    for key, section_cls in _SECTIONS.items():
        sections[key] = _build_section(section_cls, raw.get(key) or {}, key)
    feeds = [_build_feed(item) for item in raw.get("feeds") or []]
    cfg = AppConfig(feeds=feeds, **sections)
    validate_config(cfg)
    return cfg


def validate_config(cfg: AppConfig) -> None:
    """Reject values the pipeline cannot run with."""
    try:
        SummaryMode(cfg.summary.mode)
    except ValueError as exc:
        raise ConfigError(f"Unsupported summary mode: {cfg.summary.mode}") from exc
    if not 0.0 <= cfg.tagging.min_confidence <= 1.0:
        raise ConfigError("tagging.min_confidence must be within [0, 1]")
    if cfg.tagging.max_tags < 1:
        raise ConfigError("tagging.max_tags must be >= 1")
    if cfg.retry.max_attempts < 1:
        raise ConfigError("retry.max_attempts must be >= 1")
    if cfg.retry.backoff_base < 0 or cfg.retry.backoff_ceiling < 0:
        raise ConfigError("retry backoff values must be >= 0")
    if cfg.queue.workers < 1:
        raise ConfigError("queue.workers must be >= 1")
    if cfg.queue.summarize_concurrency < 1 or cfg.queue.tag_concurrency < 1:
        raise ConfigError("queue concurrency caps must be >= 1")
    if cfg.fetch.error_threshold < 1:
        raise ConfigError("fetch.error_threshold must be >= 1")
    seen: set[str] = set()
    for feed in cfg.feeds:
        if feed.url in seen:
            raise ConfigError(f"Duplicate feed url in config: {feed.url}")
        seen.add(feed.url)


def _build_section(section_cls: type, values: dict[str, Any], name: str) -> Any:
    if not isinstance(values, dict):
        raise ConfigError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(section_cls)}
    return section_cls(**{k: v for k, v in values.items() if k in known})


def _build_feed(item: Any) -> FeedConfig:
    if not isinstance(item, dict) or not item.get("url"):
        raise ConfigError(f"Feed entries need at least a url: {item!r}")
    priority = str(item.get("priority") or Priority.MEDIUM.value).lower()
    try:
        Priority(priority)
    except ValueError as exc:
        raise ConfigError(f"Unsupported feed priority: {priority}") from exc
    return FeedConfig(
        url=str(item["url"]).strip(),
        name=str(item.get("name") or item["url"]).strip(),
        category=item.get("category"),
        fetch_interval=int(item.get("fetch_interval") or 3600),
        priority=priority,
    )


def get_api_key(cfg: ProviderConfig) -> str | None:
    """Get API key from inline config or environment variable."""
    if cfg.api_key:
        return cfg.api_key
    return os.getenv(cfg.api_key_env)
