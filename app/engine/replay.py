"""
Replay Controller

Operator-triggered re-entry of a failed or dead note into the delivery cycle.
"""
from typing import Protocol

from app.engine.errors import InvalidStateError, NoteNotFoundError
from app.engine.lifecycle import NoteLifecycle
from app.engine.locks import NoteLocks
from app.engine.notes import Note, NoteStatus
from app.engine.scheduler import Trigger
from app.logging_config import get_logger
from app.routes.metrics import track_note_replayed


logger = get_logger(component="replay")


class Admission(Protocol):
    """Anything that accepts a note for delivery: the in-process Scheduler or the arq queue."""

    async def admit(self, note_id: str, trigger, delay: float | None = None, note: Note | None = None) -> bool:
        ...


class ReplayController:
    """Validates replay eligibility and hands the note back for immediate delivery."""

    def __init__(self, store, lifecycle: NoteLifecycle, admission: Admission, locks: NoteLocks | None = None):
        self.store = store
        self.lifecycle = lifecycle
        self.admission = admission
        self.locks = locks or NoteLocks()

    async def replay(self, note_id: str) -> Note:
        """
        Reset a failed/dead note to pending and submit it with zero delay.

        Raises:
            NoteNotFoundError: no note with that id
            InvalidStateError: note is delivered or pending
        """
        async with self.locks.hold(note_id):
            note = await self.store.get_by_id(note_id)
            if note is None:
                raise NoteNotFoundError(note_id)

            if note.status == NoteStatus.DELIVERED:
                raise InvalidStateError(
                    note_id, note.status.value, "Note has already been successfully delivered"
                )
            if note.status == NoteStatus.PENDING:
                raise InvalidStateError(note_id, note.status.value, "Note is already pending delivery")

            previous = note.status
            self.lifecycle.replay(note)
            await self.store.save(note)

        track_note_replayed()
        logger.info("note_replayed", note_id=note_id, previous_status=previous.value, cycle=note.cycle)

        # A pending note with a past release time is also found by the next sweep.
        try:
            await self.admission.admit(note.id, Trigger.REPLAY, delay=0.0, note=note)
        except Exception as e:
            logger.warning("replay_admission_failed", note_id=note_id, error=str(e))
        return note
