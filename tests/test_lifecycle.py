from __future__ import annotations

from datetime import datetime, timezone

import pytest

from app.engine.errors import InvalidTransitionError
from app.engine.lifecycle import NoteLifecycle
from app.engine.notes import Attempt, NoteStatus
from app.engine.retry_policy import RetryPolicy
from tests.utils import make_note


def ok_attempt(code: int = 200) -> Attempt:
    return Attempt(at=datetime.now(timezone.utc), status_code=code, ok=True)


def failed_attempt(code: int = 500) -> Attempt:
    return Attempt(at=datetime.now(timezone.utc), status_code=code, ok=False, error=f"HTTP {code}")


@pytest.fixture
def lifecycle() -> NoteLifecycle:
    return NoteLifecycle(RetryPolicy(max_attempts=3, base_delay=1.0, multiplier=2.0))


def test_success_delivers_and_sets_delivered_at(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    attempt = ok_attempt()

    decision = lifecycle.record_attempt(note, attempt)

    assert decision is None
    assert note.status == NoteStatus.DELIVERED
    assert note.delivered_at == attempt.at
    assert note.attempts == [attempt]
    assert note.next_attempt_at is None


def test_failure_with_budget_left_is_failed_with_retry_time(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    now = datetime.now(timezone.utc)

    decision = lifecycle.record_attempt(note, failed_attempt(503), now=now)

    assert decision.should_retry
    assert note.status == NoteStatus.FAILED
    assert note.delivered_at is None
    assert (note.next_attempt_at - now).total_seconds() == pytest.approx(1.0)


def test_4xx_counts_against_budget_like_5xx(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    lifecycle.record_attempt(note, failed_attempt(404))
    lifecycle.record_attempt(note, failed_attempt(400))
    decision = lifecycle.record_attempt(note, failed_attempt(410))

    assert not decision.should_retry
    assert note.status == NoteStatus.DEAD


def test_third_failure_is_dead(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    for _ in range(3):
        lifecycle.record_attempt(note, failed_attempt())

    assert note.status == NoteStatus.DEAD
    assert len(note.attempts) == 3
    assert note.next_attempt_at is None
    assert not lifecycle.can_attempt(note)


def test_failed_note_can_still_be_delivered(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    lifecycle.record_attempt(note, failed_attempt())
    lifecycle.record_attempt(note, ok_attempt())

    assert note.status == NoteStatus.DELIVERED
    assert [a.ok for a in note.attempts] == [False, True]


def test_delivered_is_terminal(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    lifecycle.record_attempt(note, ok_attempt())

    with pytest.raises(InvalidTransitionError):
        lifecycle.record_attempt(note, ok_attempt())
    with pytest.raises(InvalidTransitionError):
        lifecycle.replay(note)
    assert len(note.attempts) == 1


def test_dead_note_rejects_attempts(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    for _ in range(3):
        lifecycle.record_attempt(note, failed_attempt())

    with pytest.raises(InvalidTransitionError):
        lifecycle.record_attempt(note, ok_attempt())


def test_replay_opens_new_cycle_and_keeps_history(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    for _ in range(3):
        lifecycle.record_attempt(note, failed_attempt())

    lifecycle.replay(note)

    assert note.status == NoteStatus.PENDING
    assert note.cycle == 2
    assert note.cycle_attempts == 0
    assert len(note.attempts) == 3
    assert lifecycle.next_attempt_number(note) == 1

    lifecycle.record_attempt(note, ok_attempt())
    assert note.status == NoteStatus.DELIVERED
    assert len(note.attempts) == 4


def test_replay_of_failed_note(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    lifecycle.record_attempt(note, failed_attempt())

    lifecycle.replay(note)

    assert note.status == NoteStatus.PENDING
    assert note.next_attempt_at is None


def test_replay_of_pending_note_rejected(lifecycle: NoteLifecycle) -> None:
    note = make_note()
    with pytest.raises(InvalidTransitionError):
        lifecycle.replay(note)
