"""
Fetch cycle orchestration.

One cycle runs these steps:
1. Expire stale processing claims and verify tag counters
2. Select due feeds and fetch them concurrently
3. Identify and deduplicate every item, enqueueing new and updated articles
4. Pick up pending articles left over from earlier cycles
5. Drain the queue with a pool of pipeline workers
6. Verify tag counters again and return the cycle report
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
import logging
from typing import Sequence

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

from .config import AppConfig
from .core.dedup import DedupEngine
from .core.errors import FetchError, MalformedItem
from .core.identity import identify
from .core.queue import WorkQueue
from .core.types import CycleReport, DedupOutcome, Priority, ProcessingStatus, RawItem
from .fetch.reader import FeedReader
from .llm.providers.base import Summarizer, Tagger
from .llm.tracing import set_span_output, start_span
from .pipeline.coordinator import PipelineCoordinator, Sleep
from .storage.models import Feed
from .storage.store import Store
from .utils.logging import log_event
from .utils.time import utc_now


logger = logging.getLogger("feed_tracker.runner")


def run_cycle(
    cfg: AppConfig,
    store: Store,
    reader: FeedReader,
    summarizer: Summarizer,
    tagger: Tagger,
    feed_ids: Sequence[int] | None = None,
    force: bool = False,
    now: datetime | None = None,
    workers: int | None = None,
    progress: Progress | None = None,
) -> CycleReport:
    """Run one fetch cycle to completion.

    Args:
        cfg: Application configuration
        store: Persistence facade
        reader: Feed reader used to fetch every due feed
        summarizer: Summarization collaborator
        tagger: Tagging collaborator
        feed_ids: Restrict the cycle to these feeds
        force: Fetch feeds even if their interval has not elapsed
        now: Reference time of the cycle (defaults to the current UTC time)
        workers: Override the configured number of pipeline workers
        progress: Optional Rich progress bar for the processing stage

    Returns:
        CycleReport with the cycle's aggregate statistics
    """
    return asyncio.run(
        run_cycle_async(
            cfg,
            store,
            reader,
            summarizer,
            tagger,
            feed_ids=feed_ids,
            force=force,
            now=now,
            workers=workers,
            progress=progress,
        )
    )


async def run_cycle_async(
    cfg: AppConfig,
    store: Store,
    reader: FeedReader,
    summarizer: Summarizer,
    tagger: Tagger,
    feed_ids: Sequence[int] | None = None,
    force: bool = False,
    now: datetime | None = None,
    workers: int | None = None,
    progress: Progress | None = None,
    sleep: Sleep = asyncio.sleep,
) -> CycleReport:
    """Async implementation of ``run_cycle``."""
    now = now or utc_now()
    report = CycleReport()

    with start_span(
        "feed_tracker.cycle",
        input_value={"feed_ids": list(feed_ids) if feed_ids is not None else None, "force": force},
    ) as cycle_span:
        log_event(logger, "Cycle start", event="cycle_start", force=force, feed_ids=feed_ids)

        expired_cutoff = now - timedelta(seconds=cfg.pipeline.claim_ttl_seconds)
        released, failed = store.expire_stale_claims(expired_cutoff, cfg.retry.max_attempts)
        report.released += released
        report.failed += failed
        _record_drifts(store, report)

        queue = WorkQueue(starvation_threshold=cfg.queue.starvation_threshold)
        feeds = store.due_feeds(now, feed_ids=feed_ids, force=force)
        results = await _fetch_feeds(feeds, reader, cfg.fetch.concurrency)

        dedup = DedupEngine(
            store,
            enabled=cfg.dedup.enabled,
            threshold=cfg.dedup.title_similarity_threshold,
            window_hours=cfg.dedup.window_hours,
            min_title_tokens=cfg.dedup.min_title_tokens,
        )
        for feed, result in zip(feeds, results):
            if isinstance(result, FetchError):
                _record_fetch_failure(store, cfg, feed, result, report, now)
                continue
            store.record_feed_success(feed.id, now)
            report.feeds_fetched += 1
            _ingest_items(feed, result, dedup, queue, report)

        for ref in store.pending_articles(limit=cfg.queue.backlog_limit):
            queue.enqueue(ref.article_id, ref.feed_id, Priority.LOW)

        coordinator = PipelineCoordinator.from_config(cfg, store, summarizer, tagger, sleep=sleep)
        await _drain_queue(queue, store, coordinator, workers or cfg.queue.workers, report, progress)

        _record_drifts(store, report)
        log_event(logger, "Cycle complete", event="cycle_complete", **_report_fields(report))
        set_span_output(cycle_span, report.as_dict())
    return report


async def _fetch_feeds(
    feeds: Sequence[Feed], reader: FeedReader, concurrency: int
) -> list[list[RawItem] | FetchError]:
    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _fetch_single(feed: Feed) -> list[RawItem] | FetchError:
        async with semaphore:
            log_event(logger, "Fetch start", level=logging.DEBUG, event="fetch_start", url=feed.feed_url)
            try:
                return await reader.fetch(feed.feed_url, since=feed.last_fetched)
            except FetchError as exc:
                return exc

    # gather() preserves input order so results line up with feeds.
    tasks = [asyncio.create_task(_fetch_single(feed)) for feed in feeds]
    return await asyncio.gather(*tasks)


def _record_fetch_failure(
    store: Store,
    cfg: AppConfig,
    feed: Feed,
    error: FetchError,
    report: CycleReport,
    now: datetime,
) -> None:
    report.feed_errors[feed.feed_url] = f"{error.kind}: {error}"
    log_event(
        logger,
        "Fetch failed",
        level=logging.WARNING,
        event="fetch_failed",
        url=feed.feed_url,
        error_kind=error.kind,
        error=str(error),
        retry_after=error.retry_after,
    )
    deactivated = store.record_feed_failure(
        feed.id,
        error,
        cfg.fetch.error_threshold,
        default_retry_after=cfg.fetch.default_retry_after,
        now=now,
    )
    if deactivated:
        report.deactivated_feeds.append(feed.feed_url)


def _ingest_items(
    feed: Feed,
    items: Sequence[RawItem],
    dedup: DedupEngine,
    queue: WorkQueue,
    report: CycleReport,
) -> None:
    report.fetched += len(items)
    for item in items:
        try:
            identity = identify(item)
        except MalformedItem as exc:
            report.malformed += 1
            logger.warning("Skipping malformed item from %s: %s", feed.feed_url, exc)
            continue
        decision = dedup.ingest(feed.id, item, identity)
        if decision.outcome is DedupOutcome.NEW:
            report.new += 1
            queue.enqueue(decision.article_id, feed.id, feed.priority)
        elif decision.outcome is DedupOutcome.UPDATED:
            report.updated += 1
            queue.enqueue(decision.article_id, feed.id, Priority.LOW)
        elif decision.outcome is DedupOutcome.DUPLICATE:
            report.duplicates += 1
        else:
            report.unchanged += 1


async def _drain_queue(
    queue: WorkQueue,
    store: Store,
    coordinator: PipelineCoordinator,
    workers: int,
    report: CycleReport,
    progress: Progress | None,
) -> None:
    task_id = None
    if progress is not None:
        task_id = progress.add_task("Processing", total=len(queue))

    async def _worker() -> None:
        while True:
            claimed = queue.claim_next(store.claim_article)
            if claimed is None:
                return
            try:
                outcome = await coordinator.process(claimed)
            except Exception:  # noqa: BLE001
                # The claim stays in place and expires at the start of a later cycle.
                report.errors += 1
                logger.exception("Worker error on article %s", claimed.article_id)
                if progress is not None and task_id is not None:
                    progress.advance(task_id, 1)
                continue
            report.retries += outcome.retries
            if outcome.status is ProcessingStatus.COMPLETED:
                report.completed += 1
            elif outcome.status is ProcessingStatus.FAILED:
                report.failed += 1
            elif outcome.status is ProcessingStatus.PENDING:
                report.released += 1
            if progress is not None and task_id is not None:
                progress.advance(task_id, 1)

    tasks = [asyncio.create_task(_worker()) for _ in range(max(1, workers))]
    await asyncio.gather(*tasks)


def _record_drifts(store: Store, report: CycleReport) -> None:
    for drift in store.verify_usage_counts():
        report.counter_drifts.append(str(drift))


def _report_fields(report: CycleReport) -> dict:
    fields = report.as_dict()
    fields["feed_errors"] = len(report.feed_errors)
    fields["deactivated_feeds"] = len(report.deactivated_feeds)
    fields["counter_drifts"] = len(report.counter_drifts)
    return fields


def build_progress(console: Console) -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
    )


def render_report(report: CycleReport, console: Console) -> None:
    """Display the cycle report to the console."""
    table = Table(title="Cycle summary", show_header=True, header_style="bold")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    for key in (
        "feeds_fetched",
        "fetched",
        "new",
        "updated",
        "unchanged",
        "duplicates",
        "malformed",
        "completed",
        "failed",
        "released",
        "retries",
        "errors",
    ):
        table.add_row(key, str(getattr(report, key)))
    console.print(table)

    for url, error in report.feed_errors.items():
        console.print(f"[yellow]Feed error[/yellow] {url}: {error}")
    for url in report.deactivated_feeds:
        console.print(f"[red]Deactivated feed[/red] {url}")
    for drift in report.counter_drifts:
        console.print(f"[magenta]Counter drift corrected[/magenta] {drift}")
