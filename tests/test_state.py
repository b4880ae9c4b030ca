"""Tests for the article processing state machine."""

from __future__ import annotations

import pytest

from feed_tracker.core.errors import InvalidTransition
from feed_tracker.core.state import (
    COMPLETED,
    FAILED,
    PENDING,
    PROCESSING,
    can_transition,
    sources_for,
    transition_name,
)


def test_allowed_transitions_are_named():
    assert transition_name(PENDING, PROCESSING) == "claim"
    assert transition_name(PROCESSING, COMPLETED) == "complete"
    assert transition_name(PROCESSING, FAILED) == "fail"
    assert transition_name(PROCESSING, PENDING) == "release"
    assert transition_name(FAILED, PENDING) == "requeue"
    assert transition_name("completed", "pending") == "content_update"


@pytest.mark.parametrize(
    "source,target",
    [
        (PENDING, COMPLETED),
        (PENDING, FAILED),
        (COMPLETED, FAILED),
        (FAILED, PROCESSING),
        (COMPLETED, PROCESSING),
    ],
)
def test_disallowed_transitions_raise(source, target):
    assert not can_transition(source, target)
    with pytest.raises(InvalidTransition):
        transition_name(source, target)


def test_pending_is_reachable_from_every_other_state():
    assert set(sources_for(PENDING)) == {PROCESSING, FAILED, COMPLETED}
