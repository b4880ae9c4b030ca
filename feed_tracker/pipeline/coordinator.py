"""
Per-article processing: summarize, tag, persist.

Summarization is required for completion; tagging is best effort. The
coordinator owns retries of transient collaborator failures, so the caller
only sees the final outcome:
- completed: summary saved, tag set replaced (possibly empty)
- failed: persistent failure or attempt ceiling reached
- pending: claim released (article timeout, cancellation)
- claim lost: another writer took the article over; nothing was written
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from ..config import AppConfig
from ..core.errors import ClaimConflict, ProcessingError, SummarizeError, TagError
from ..core.queue import SUMMARIZE, TAG, ServiceLimits
from ..core.state import COMPLETED, FAILED, PENDING
from ..core.tags import TagTaxonomy, resolve_tags
from ..core.types import ClaimedArticle, ProcessingStatus, ResolvedTag, SummaryMode
from ..llm.providers.base import Summarizer, Tagger
from ..storage.models import Article
from ..storage.store import Store
from ..utils.logging import log_event
from .retry import RetryPolicy
from .text import html_to_text


logger = logging.getLogger("feed_tracker.pipeline")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class ProcessOutcome:
    """What happened to one claimed article.

    Attributes:
        article_id: The processed article
        status: Final status, None if the claim was lost
        attempts: Persistent attempts consumed by this run
        retries: Transient failures retried (summarize and tag)
        tags: Number of tags assigned
        reused_summary: Whether a committed summary was reused
        reason: Failure or release reason
    """
    article_id: int
    status: ProcessingStatus | None = None
    attempts: int = 0
    retries: int = 0
    tags: int = 0
    reused_summary: bool = False
    reason: str | None = None

    @property
    def claim_lost(self) -> bool:
        return self.status is None


class PipelineCoordinator:
    """Runs one claimed article through summarization and tagging."""

    def __init__(
        self,
        store: Store,
        summarizer: Summarizer,
        tagger: Tagger,
        limits: ServiceLimits | None = None,
        retry: RetryPolicy | None = None,
        summary_mode: SummaryMode | str = SummaryMode.BRIEF,
        summarize_timeout: float = 30.0,
        tag_timeout: float = 30.0,
        article_timeout: float = 60.0,
        min_confidence: float = 0.3,
        max_tags: int = 10,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.summarizer = summarizer
        self.tagger = tagger
        self.limits = limits or ServiceLimits({SUMMARIZE: 5, TAG: 10})
        self.retry = retry or RetryPolicy()
        self.summary_mode = SummaryMode(summary_mode)
        self.summarize_timeout = summarize_timeout
        self.tag_timeout = tag_timeout
        self.article_timeout = article_timeout
        self.min_confidence = min_confidence
        self.max_tags = max_tags
        self.sleep = sleep

    @classmethod
    def from_config(
        cls,
        cfg: AppConfig,
        store: Store,
        summarizer: Summarizer,
        tagger: Tagger,
        limits: ServiceLimits | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> "PipelineCoordinator":
        if limits is None:
            limits = ServiceLimits(
                {SUMMARIZE: cfg.queue.summarize_concurrency, TAG: cfg.queue.tag_concurrency}
            )
        return cls(
            store,
            summarizer,
            tagger,
            limits=limits,
            retry=RetryPolicy.from_config(cfg.retry),
            summary_mode=cfg.summary.mode,
            summarize_timeout=cfg.summary.timeout_seconds,
            tag_timeout=cfg.tagging.timeout_seconds,
            article_timeout=cfg.pipeline.article_timeout_seconds,
            min_confidence=cfg.tagging.min_confidence,
            max_tags=cfg.tagging.max_tags,
            sleep=sleep,
        )

    async def process(self, claimed: ClaimedArticle) -> ProcessOutcome:
        """Process one claimed article to a final or released state.

        Raises:
            asyncio.CancelledError: After releasing the claim to pending
        """
        outcome = ProcessOutcome(article_id=claimed.article_id)
        try:
            await asyncio.wait_for(self._run(claimed, outcome), self.article_timeout)
        except asyncio.TimeoutError:
            self._release(claimed, outcome, increment=True, reason="article processing timed out")
        except asyncio.CancelledError:
            self._release(claimed, outcome, increment=False, reason=None)
            raise
        except ClaimConflict:
            outcome.status = None
            logger.info("Lost claim on article %s; dropping", claimed.article_id)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected error processing article %s", claimed.article_id)
            self._release(claimed, outcome, increment=True, reason=f"{type(exc).__name__}: {exc}")
        log_event(
            logger,
            "Article processed",
            level=logging.DEBUG,
            event="article_processed",
            article_id=claimed.article_id,
            status=outcome.status.value if outcome.status else "claim_lost",
            retries=outcome.retries,
            tags=outcome.tags,
        )
        return outcome

    async def _run(self, claimed: ClaimedArticle, outcome: ProcessOutcome) -> None:
        article = await asyncio.to_thread(self.store.get_article, claimed.article_id)
        if article is None:
            raise ClaimConflict(claimed.article_id)

        text = html_to_text(article.content)
        if not text:
            await self._fail(claimed, outcome, "empty content")
            return

        summary = await self._summarize(claimed, article, text, outcome)
        if summary is None:
            return

        tags = await self._tag(text, summary, outcome)
        await asyncio.to_thread(self.store.replace_article_tags, claimed.article_id, claimed.token, tags)
        await asyncio.to_thread(self.store.complete_article, claimed.article_id, claimed.token)
        outcome.status = COMPLETED
        outcome.tags = len(tags)

    async def _summarize(
        self, claimed: ClaimedArticle, article: Article, text: str, outcome: ProcessOutcome
    ) -> str | None:
        existing = await asyncio.to_thread(self.store.get_summary, article.id)
        if (
            existing is not None
            and not existing.is_stale
            and existing.content_hash == article.content_hash
            and existing.summary_type == self.summary_mode.value
        ):
            outcome.reused_summary = True
            return existing.summary_text

        content = f"{article.title}\n\n{text}" if article.title else text
        while True:
            try:
                async with self.limits.slot(SUMMARIZE):
                    result = await asyncio.wait_for(
                        self.summarizer.summarize(content, self.summary_mode),
                        self.summarize_timeout,
                    )
            except asyncio.TimeoutError:
                error: ProcessingError = SummarizeError(
                    ProcessingError.TRANSIENT, "summarize call timed out"
                )
            except SummarizeError as exc:
                error = exc
            else:
                await asyncio.to_thread(
                    self.store.save_summary,
                    article.id,
                    claimed.token,
                    result,
                    self.summary_mode,
                    article.content_hash,
                )
                return result.text

            if not error.transient:
                await self._fail(claimed, outcome, f"summarize rejected: {error}")
                return None
            attempts = await asyncio.to_thread(
                self.store.record_attempt_failure, article.id, claimed.token, f"summarize: {error}"
            )
            outcome.attempts += 1
            if self.retry.exhausted(attempts):
                await self._fail(claimed, outcome, f"summarize failed after {attempts} attempts: {error}")
                return None
            outcome.retries += 1
            delay = self.retry.delay_for(attempts, error)
            logger.info(
                "Transient summarize failure on article %s (%s); retrying in %.1fs",
                article.id,
                error,
                delay,
            )
            await self.sleep(delay)

    async def _tag(self, text: str, summary: str, outcome: ProcessOutcome) -> list[ResolvedTag]:
        taxonomy: TagTaxonomy = await asyncio.to_thread(self.store.load_taxonomy)
        labels = taxonomy.labels
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                async with self.limits.slot(TAG):
                    pairs = await asyncio.wait_for(
                        self.tagger.tag(text, summary, labels), self.tag_timeout
                    )
            except asyncio.TimeoutError:
                error: ProcessingError = TagError(ProcessingError.TRANSIENT, "tag call timed out")
            except TagError as exc:
                error = exc
            else:
                return resolve_tags(
                    pairs, taxonomy, min_confidence=self.min_confidence, max_tags=self.max_tags
                )

            if not error.transient:
                logger.warning("Tagging rejected (%s); completing without tags", error)
                return []
            if attempt < self.retry.max_attempts:
                outcome.retries += 1
                await self.sleep(self.retry.delay_for(attempt, error))
        logger.warning("Tagging failed after %d attempts; completing without tags", self.retry.max_attempts)
        return []

    async def _fail(self, claimed: ClaimedArticle, outcome: ProcessOutcome, reason: str) -> None:
        await asyncio.to_thread(self.store.fail_article, claimed.article_id, claimed.token, reason)
        outcome.status = FAILED
        outcome.reason = reason
        logger.warning("Article %s failed: %s", claimed.article_id, reason)

    def _release(
        self, claimed: ClaimedArticle, outcome: ProcessOutcome, increment: bool, reason: str | None
    ) -> None:
        result = self.store.release_claim(
            claimed.article_id,
            claimed.token,
            increment_attempts=increment,
            reason=reason,
            max_attempts=self.retry.max_attempts,
        )
        outcome.reason = reason
        if result is None:
            outcome.status = None
            return
        if increment:
            outcome.attempts += 1
        outcome.status = result.status
        if result.status is PENDING:
            logger.info("Released article %s to pending (%s)", claimed.article_id, reason or "cancelled")
        else:
            logger.warning("Article %s failed: %s", claimed.article_id, reason)
