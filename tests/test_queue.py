"""Tests for the priority work queue and per-service concurrency caps."""

from __future__ import annotations

import asyncio

import pytest

from feed_tracker.core.errors import ClaimConflict
from feed_tracker.core.queue import ServiceLimits, WorkQueue
from feed_tracker.core.types import Priority


def _drain(queue: WorkQueue) -> list[int]:
    order = []
    while (item := queue.pop()) is not None:
        order.append(item.article_id)
    return order


def test_higher_priority_served_first():
    queue = WorkQueue()
    queue.enqueue(1, feed_id=1, priority=Priority.LOW)
    queue.enqueue(2, feed_id=1, priority=Priority.HIGH)
    queue.enqueue(3, feed_id=1, priority="medium")
    assert _drain(queue) == [2, 3, 1]


def test_enqueue_is_idempotent_while_queued():
    queue = WorkQueue()
    assert queue.enqueue(7, feed_id=1) is True
    assert queue.enqueue(7, feed_id=1, priority=Priority.HIGH) is False
    assert len(queue) == 1
    assert 7 in queue
    queue.pop()
    assert 7 not in queue
    assert queue.enqueue(7, feed_id=1) is True


def test_round_robin_across_feeds_within_tier():
    queue = WorkQueue()
    for article_id in (1, 2, 3):
        queue.enqueue(article_id, feed_id=10, priority=Priority.HIGH)
    queue.enqueue(4, feed_id=20, priority=Priority.HIGH)
    assert _drain(queue) == [1, 4, 2, 3]


def test_starved_lower_tier_is_admitted():
    queue = WorkQueue(starvation_threshold=2)
    for article_id in range(1, 6):
        queue.enqueue(article_id, feed_id=1, priority=Priority.HIGH)
    queue.enqueue(100, feed_id=2, priority=Priority.LOW)
    assert _drain(queue) == [1, 2, 100, 3, 4, 5]


def test_claim_next_skips_conflicts():
    queue = WorkQueue()
    queue.enqueue(1, feed_id=1)
    queue.enqueue(2, feed_id=1)

    def claim(article_id: int) -> str:
        if article_id == 1:
            raise ClaimConflict(article_id)
        return f"token-{article_id}"

    claimed = queue.claim_next(claim)
    assert claimed is not None
    assert claimed.article_id == 2
    assert claimed.token == "token-2"
    assert queue.claim_next(claim) is None


def test_service_limits_cap_concurrency():
    limits = ServiceLimits({"summarize": 2})
    peak = 0

    async def call() -> None:
        nonlocal peak
        async with limits.slot("summarize"):
            peak = max(peak, limits.in_flight("summarize"))
            await asyncio.sleep(0.01)

    async def main() -> None:
        await asyncio.gather(*(call() for _ in range(6)))

    asyncio.run(main())
    assert peak == 2
    assert limits.in_flight("summarize") == 0
    assert limits.limit_for("summarize") == 2


def test_service_limits_reject_zero_cap():
    with pytest.raises(ValueError):
        ServiceLimits({"tag": 0})
