"""
Command-line interface for the feed tracker.

Uses Typer for commands and Rich for output. Loads .env files so API keys
can be kept out of the config file.
"""

from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv
import typer
from rich.console import Console
from rich.table import Table

from .config import AppConfig, load_config
from .core.errors import ConfigError, TaxonomyCycleError
from .core.types import ProcessingStatus
from .fetch.reader import HttpFeedReader
from .llm.providers.factory import create_provider
from .llm.tracing import flush, setup_langfuse
from .runner import build_progress, render_report, run_cycle
from .storage.store import Store
from .utils.logging import setup_llm_logger, setup_logging

app = typer.Typer(add_completion=False, help="Monitor RSS/Atom feeds, summarize and tag articles.")
console = Console()

ConfigOption = typer.Option(
    None, "--config", "-c", exists=True, envvar="FEED_TRACKER_CONFIG", help="YAML config file."
)


def _load(config: Path | None) -> AppConfig:
    load_dotenv()
    try:
        return load_config(str(config) if config else None)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc


def _open_store(cfg: AppConfig) -> Store:
    store = Store(cfg.database)
    store.init_schema()
    return store


@app.command()
def run(
    config: Path | None = ConfigOption,
    feed_id: list[int] | None = typer.Option(None, "--feed-id", help="Only fetch these feeds."),
    force: bool = typer.Option(False, "--force", help="Ignore fetch intervals."),
    workers: int | None = typer.Option(None, "--workers", help="Override queue.workers."),
    progress: bool = typer.Option(True, "--progress/--no-progress"),
    log_level: str | None = typer.Option(None, "--log-level", help="Logging level."),
    api_key: str | None = typer.Option(None, "--api-key", help="Override provider API key."),
):
    """Run one fetch cycle: fetch due feeds, deduplicate, summarize and tag."""
    cfg = _load(config)
    if log_level:
        cfg.logging.level = log_level
    if api_key:
        cfg.provider.api_key = api_key

    setup_logging(cfg.logging)
    llm_logger = setup_llm_logger(cfg.logging)
    setup_langfuse(cfg.langfuse)

    store = _open_store(cfg)
    store.sync_feeds(cfg.feeds)
    try:
        provider = create_provider(cfg, llm_logger)
    except ValueError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=2) from exc
    reader = HttpFeedReader(
        timeout=cfg.fetch.timeout_seconds,
        user_agent=cfg.fetch.user_agent,
        trust_env=cfg.fetch.trust_env,
    )

    try:
        if progress:
            with build_progress(console) as bar:
                report = run_cycle(
                    cfg, store, reader, provider, provider,
                    feed_ids=feed_id or None, force=force, workers=workers, progress=bar,
                )
        else:
            report = run_cycle(
                cfg, store, reader, provider, provider,
                feed_ids=feed_id or None, force=force, workers=workers,
            )
    finally:
        store.close()
        flush()
    render_report(report, console)


@app.command("init-db")
def init_db(config: Path | None = ConfigOption):
    """Create tables, seed the starter taxonomy and register configured feeds."""
    cfg = _load(config)
    store = _open_store(cfg)
    ids = store.sync_feeds(cfg.feeds)
    store.close()
    console.print(f"Database ready at {cfg.database.url} ({len(ids)} configured feeds)")


@app.command()
def status(
    config: Path | None = ConfigOption,
    tags: bool = typer.Option(False, "--tags"),
    failed: bool = typer.Option(False, "--failed", help="List failed articles with their last error"),
):
    """Show per-feed statistics (and tag popularity with --tags)."""
    cfg = _load(config)
    store = _open_store(cfg)
    try:
        table = Table(title="Feeds", header_style="bold")
        for column in ("ID", "Name", "Active", "Errors", "Articles", "Done", "Pending", "Failed", "Last fetched"):
            table.add_column(column)
        for row in store.feed_stats():
            table.add_row(
                str(row["id"]),
                row["feed_name"],
                "yes" if row["is_active"] else "[red]no[/red]",
                str(row["error_count"]),
                str(row["total_articles"]),
                str(row["processed_articles"]),
                str(row["pending_articles"]),
                str(row["failed_articles"]),
                str(row["last_fetched"] or "-"),
            )
        console.print(table)

        counts = store.status_counts()
        console.print(", ".join(f"{name}={count}" for name, count in counts.items()))

        if tags:
            tag_table = Table(title="Tags", header_style="bold")
            for column in ("Tag", "Category", "Usage", "Avg confidence"):
                tag_table.add_column(column)
            for row in store.tag_popularity():
                avg = row["avg_confidence"]
                tag_table.add_row(
                    row["tag_name"],
                    row["tag_category"],
                    str(row["usage_count"]),
                    f"{avg:.2f}" if avg is not None else "-",
                )
            console.print(tag_table)

        if failed:
            failed_table = Table(title="Failed articles", header_style="bold")
            for column in ("ID", "Feed", "Title", "Attempts", "Last error"):
                failed_table.add_column(column)
            for row in store.articles_full(ProcessingStatus.FAILED):
                failed_table.add_row(
                    str(row["id"]),
                    row["feed_name"],
                    row["title"],
                    str(row["processing_attempts"]),
                    row["last_error"] or "-",
                )
            console.print(failed_table)
    finally:
        store.close()


@app.command()
def requeue(
    config: Path | None = ConfigOption,
    article_id: list[int] | None = typer.Option(None, "--article-id", help="Requeue only these articles."),
):
    """Move failed articles back to pending (all failed articles by default)."""
    cfg = _load(config)
    store = _open_store(cfg)
    refs = store.requeue_failed(article_id or None)
    store.close()
    console.print(f"Requeued {len(refs)} article(s)")


@app.command("reactivate-feed")
def reactivate_feed(feed_id: int, config: Path | None = ConfigOption):
    """Reactivate a deactivated feed and clear its error count."""
    cfg = _load(config)
    store = _open_store(cfg)
    found = store.reactivate_feed(feed_id)
    store.close()
    if not found:
        console.print(f"[yellow]No feed with id {feed_id}[/yellow]")
        return
    console.print(f"Feed {feed_id} reactivated")


@app.command("remove-feed")
def remove_feed(feed_id: int, config: Path | None = ConfigOption):
    """Delete a feed with its articles, summaries and tag assignments."""
    cfg = _load(config)
    store = _open_store(cfg)
    found = store.delete_feed(feed_id)
    store.close()
    if not found:
        console.print(f"[yellow]No feed with id {feed_id}[/yellow]")
        return
    console.print(f"Feed {feed_id} removed")


@app.command("verify-counters")
def verify_counters(config: Path | None = ConfigOption):
    """Recompute tag usage counters and correct any drift."""
    cfg = _load(config)
    store = _open_store(cfg)
    drifts = store.verify_usage_counts()
    store.close()
    if not drifts:
        console.print("All tag counters match")
        return
    for drift in drifts:
        console.print(f"[magenta]Corrected[/magenta] {drift}")


@app.command("set-tag-parent")
def set_tag_parent(
    tag: str,
    parent: str | None = typer.Argument(None, help="Parent tag; omit to clear."),
    config: Path | None = ConfigOption,
):
    """Attach a tag to a parent tag in the taxonomy."""
    cfg = _load(config)
    store = _open_store(cfg)
    try:
        store.set_tag_parent(tag, parent)
    except KeyError as exc:
        console.print(f"[red]Unknown tag:[/red] {exc.args[0]}")
        return
    except TaxonomyCycleError as exc:
        console.print(f"[red]Rejected:[/red] {exc}")
        return
    finally:
        store.close()
    console.print(f"{tag} -> {parent or '(root)'}")


if __name__ == "__main__":
    app()
