"""
Engine error hierarchy.

Delivery failures are never raised; they are recorded as Attempts.
Only store failures and replay validation surface as exceptions.
"""


class DropLaterError(Exception):
    """Base class for all engine errors."""


class NoteNotFoundError(DropLaterError):
    """No note exists with the given id."""

    def __init__(self, note_id: str):
        super().__init__(f"Note not found: {note_id}")
        self.note_id = note_id


class InvalidStateError(DropLaterError):
    """The note's current status does not allow the requested operation."""

    def __init__(self, note_id: str, status: str, message: str | None = None):
        super().__init__(message or f"Note {note_id} is {status}")
        self.note_id = note_id
        self.status = status


class InvalidTransitionError(InvalidStateError):
    """A lifecycle transition was requested from a state that does not permit it."""


class NoteStoreError(DropLaterError):
    """The record store could not complete a read or write."""


class StaleNoteError(NoteStoreError):
    """Optimistic concurrency conflict: the note changed since it was read."""

    def __init__(self, note_id: str, expected_version: int):
        super().__init__(f"Note {note_id} was modified concurrently (expected version {expected_version})")
        self.note_id = note_id
        self.expected_version = expected_version
