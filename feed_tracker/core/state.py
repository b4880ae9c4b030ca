"""
Processing state machine for articles.

Allowed transitions:
1. pending -> processing (claim)
2. processing -> completed / failed
3. processing -> pending (release on cancellation or timeout, stale claim expiry)
4. failed -> pending (requeue)
5. completed -> pending (content update)

The store enforces these transitions with compare-and-set updates; this
module is the single table both the store and the tests consult.
"""

from __future__ import annotations

from .errors import InvalidTransition
from .types import ProcessingStatus


PENDING = ProcessingStatus.PENDING
PROCESSING = ProcessingStatus.PROCESSING
COMPLETED = ProcessingStatus.COMPLETED
FAILED = ProcessingStatus.FAILED

TRANSITIONS: dict[tuple[ProcessingStatus, ProcessingStatus], str] = {
    (PENDING, PROCESSING): "claim",
    (PROCESSING, COMPLETED): "complete",
    (PROCESSING, FAILED): "fail",
    (PROCESSING, PENDING): "release",
    (FAILED, PENDING): "requeue",
    (COMPLETED, PENDING): "content_update",
}


def transition_name(source: ProcessingStatus | str, target: ProcessingStatus | str) -> str:
    """Return the name of an allowed transition.

    Raises:
        InvalidTransition: If the state machine does not allow the change
    """
    key = (ProcessingStatus(source), ProcessingStatus(target))
    name = TRANSITIONS.get(key)
    if name is None:
        raise InvalidTransition(f"{key[0].value} -> {key[1].value} is not allowed")
    return name


def can_transition(source: ProcessingStatus | str, target: ProcessingStatus | str) -> bool:
    return (ProcessingStatus(source), ProcessingStatus(target)) in TRANSITIONS


def sources_for(target: ProcessingStatus) -> list[ProcessingStatus]:
    """All states from which ``target`` can be reached."""
    return [src for (src, dst) in TRANSITIONS if dst == target]


def attempts_exhausted(attempts: int, max_attempts: int) -> bool:
    return attempts >= max_attempts
