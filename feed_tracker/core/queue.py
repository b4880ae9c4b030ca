"""
Work queue with priority tiers, per-feed fairness and service limits.

Ordering rules:
1. Higher tiers are served first, except that a non-empty lower tier which
   has been passed over ``starvation_threshold`` times in a row is served
   next (forced admission).
2. Inside a tier, feeds are served round-robin; each feed's articles come
   out in the order they were enqueued.

The queue lives on the event loop thread and never awaits while popping
and claiming, so a dequeue and its claim form one step for every worker
of the process. Claims across processes are protected by the store's
compare-and-set.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict, deque
from contextlib import asynccontextmanager
import logging
from typing import AsyncIterator, Callable

from .errors import ClaimConflict
from .types import ClaimedArticle, Priority, QueuedArticle


logger = logging.getLogger("feed_tracker.queue")

SUMMARIZE = "summarize"
TAG = "tag"


class _Tier:
    """One priority tier: a round-robin ring of per-feed FIFO lanes."""

    def __init__(self) -> None:
        self._lanes: OrderedDict[int, deque[QueuedArticle]] = OrderedDict()
        self.size = 0

    def push(self, item: QueuedArticle) -> None:
        lane = self._lanes.get(item.feed_id)
        if lane is None:
            lane = deque()
            self._lanes[item.feed_id] = lane
        lane.append(item)
        self.size += 1

    def pop(self) -> QueuedArticle:
        feed_id, lane = next(iter(self._lanes.items()))
        item = lane.popleft()
        if lane:
            self._lanes.move_to_end(feed_id)
        else:
            del self._lanes[feed_id]
        self.size -= 1
        return item


class WorkQueue:
    """Priority work queue that hands out claimed articles.

    Attributes:
        starvation_threshold: Consecutive pass-overs before a lower tier is forced in
    """

    def __init__(self, starvation_threshold: int = 5):
        if starvation_threshold < 1:
            raise ValueError("starvation_threshold must be >= 1")
        self.starvation_threshold = starvation_threshold
        self._tiers: dict[Priority, _Tier] = {p: _Tier() for p in Priority}
        self._skipped: dict[Priority, int] = {p: 0 for p in Priority}
        self._queued: set[int] = set()

    def __len__(self) -> int:
        return sum(tier.size for tier in self._tiers.values())

    def __contains__(self, article_id: object) -> bool:
        return article_id in self._queued

    def enqueue(self, article_id: int, feed_id: int, priority: Priority | str = Priority.MEDIUM) -> bool:
        """Add an article reference to its priority tier.

        Returns:
            False if the article is already queued, True otherwise
        """
        if article_id in self._queued:
            return False
        item = QueuedArticle(article_id=article_id, feed_id=feed_id, priority=Priority(priority))
        self._tiers[item.priority].push(item)
        self._queued.add(article_id)
        return True

    def pop(self) -> QueuedArticle | None:
        """Remove and return the next eligible reference without claiming it."""
        tier = self._select_tier()
        if tier is None:
            return None
        for priority in Priority:
            if priority is tier:
                self._skipped[priority] = 0
            elif self._tiers[priority].size:
                self._skipped[priority] += 1
        item = self._tiers[tier].pop()
        self._queued.discard(item.article_id)
        return item

    def claim_next(self, claim: Callable[[int], str]) -> ClaimedArticle | None:
        """Pop the next article and claim it in the same step.

        Args:
            claim: Callable that atomically moves an article from pending to
                   processing and returns the claim token, raising
                   ClaimConflict if another worker won

        Returns:
            The claimed article, or None when the queue is drained
        """
        while True:
            item = self.pop()
            if item is None:
                return None
            try:
                token = claim(item.article_id)
            except ClaimConflict:
                logger.debug("Claim conflict on article %s; skipping", item.article_id)
                continue
            return ClaimedArticle(
                article_id=item.article_id,
                feed_id=item.feed_id,
                priority=item.priority,
                token=token,
            )

    def _select_tier(self) -> Priority | None:
        # Lowest tiers first so the most starved tier wins forced admission.
        for priority in reversed(list(Priority)):
            if self._tiers[priority].size and self._skipped[priority] >= self.starvation_threshold:
                return priority
        for priority in Priority:
            if self._tiers[priority].size:
                return priority
        return None


class ServiceLimits:
    """Concurrency caps per downstream service class."""

    def __init__(self, limits: dict[str, int]):
        for name, limit in limits.items():
            if limit < 1:
                raise ValueError(f"Concurrency cap for {name} must be >= 1")
        self._limits = dict(limits)
        self._semaphores = {name: asyncio.Semaphore(limit) for name, limit in limits.items()}
        self._in_flight = {name: 0 for name in limits}

    def limit_for(self, service: str) -> int:
        return self._limits[service]

    def in_flight(self, service: str) -> int:
        return self._in_flight[service]

    @asynccontextmanager
    async def slot(self, service: str) -> AsyncIterator[None]:
        """Hold one concurrency slot of ``service`` for the duration of the block."""
        semaphore = self._semaphores[service]
        async with semaphore:
            self._in_flight[service] += 1
            try:
                yield
            finally:
                self._in_flight[service] -= 1
