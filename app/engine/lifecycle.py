"""
Note lifecycle state machine.

Owns every legal status transition and the append-only attempt history:

    pending  -> delivered   successful attempt (sets delivered_at)
    pending  -> failed      failed attempt, retry budget left
    failed   -> failed      failed attempt, retry budget left
    pending  -> dead        failed attempt, budget exhausted
    failed   -> dead        failed attempt, budget exhausted
    failed   -> pending     replay
    dead     -> pending     replay

Nothing leaves `delivered`.
"""
from datetime import datetime, timedelta

from app.engine.errors import InvalidTransitionError
from app.engine.notes import Attempt, Note, NoteStatus, utcnow
from app.engine.retry_policy import RetryDecision, RetryPolicy


ATTEMPTABLE_STATUSES = frozenset({NoteStatus.PENDING, NoteStatus.FAILED})
REPLAYABLE_STATUSES = frozenset({NoteStatus.FAILED, NoteStatus.DEAD})


class NoteLifecycle:
    """Applies attempt outcomes and replays to a note in place."""

    def __init__(self, retry_policy: RetryPolicy | None = None):
        self.retry_policy = retry_policy or RetryPolicy()

    @property
    def max_attempts(self) -> int:
        return self.retry_policy.max_attempts

    def can_attempt(self, note: Note) -> bool:
        return note.status in ATTEMPTABLE_STATUSES and note.cycle_attempts < self.max_attempts

    def next_attempt_number(self, note: Note) -> int:
        """1-based number of the next attempt in the note's current cycle."""
        return note.cycle_attempts + 1

    def record_attempt(self, note: Note, attempt: Attempt, now: datetime | None = None) -> RetryDecision | None:
        """
        Append `attempt` and transition the note.

        Returns the retry decision for a failed attempt, None for a success.
        The decision's delay is also reflected in `note.next_attempt_at`.
        """
        if note.status == NoteStatus.DELIVERED:
            raise InvalidTransitionError(note.id, note.status.value, f"Note {note.id} is already delivered")
        if note.status not in ATTEMPTABLE_STATUSES:
            raise InvalidTransitionError(
                note.id, note.status.value, f"Cannot record an attempt for a {note.status.value} note"
            )
        if note.cycle_attempts >= self.max_attempts:
            raise InvalidTransitionError(
                note.id, note.status.value, f"Note {note.id} has exhausted its {self.max_attempts} attempts"
            )

        now = now or utcnow()
        attempt_number = note.cycle_attempts + 1
        note.attempts = [*note.attempts, attempt]
        note.cycle_attempts = attempt_number
        note.updated_at = now

        if attempt.ok:
            note.status = NoteStatus.DELIVERED
            note.delivered_at = attempt.at
            note.next_attempt_at = None
            return None

        decision = self.retry_policy.next(attempt_number)
        if decision.should_retry:
            note.status = NoteStatus.FAILED
            note.next_attempt_at = now + timedelta(seconds=decision.delay)
        else:
            note.status = NoteStatus.DEAD
            note.next_attempt_at = None
        return decision

    def replay(self, note: Note, now: datetime | None = None) -> None:
        """Reset a failed/dead note to pending and open a new delivery cycle."""
        if note.status not in REPLAYABLE_STATUSES:
            raise InvalidTransitionError(
                note.id, note.status.value, f"Cannot replay a {note.status.value} note"
            )
        note.status = NoteStatus.PENDING
        note.cycle += 1
        note.cycle_attempts = 0
        note.next_attempt_at = None
        note.updated_at = now or utcnow()
