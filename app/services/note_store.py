"""
Note record store.

The engine treats the store as a synchronous read/write collaborator:
create, get by id, save (full overwrite guarded by an optimistic version check),
due-time queries and paginated listing.

Two implementations: `SqlNoteStore` (SQLAlchemy async, production) and
`InMemoryNoteStore` (tests and local runs).
"""
from datetime import datetime

from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.engine.errors import NoteNotFoundError, NoteStoreError, StaleNoteError
from app.engine.notes import Attempt, Note, NoteStatus, ensure_utc, utcnow
from app.models.note import NoteAttemptRecord, NoteRecord


class NoteStore:
    """Interface every record store implements."""

    async def create(self, note: Note) -> Note:
        raise NotImplementedError

    async def get_by_id(self, note_id: str) -> Note | None:
        raise NotImplementedError

    async def save(self, note: Note) -> Note:
        """
        Overwrite the stored note.

        Raises StaleNoteError if the stored version differs from `note.version`.
        On success `note.version` is incremented.
        """
        raise NotImplementedError

    async def find_due(self, now: datetime, limit: int) -> list[Note]:
        """Pending notes with release_at <= now, oldest first."""
        raise NotImplementedError

    async def find_retry_due(self, now: datetime, limit: int) -> list[Note]:
        """Failed notes whose next_attempt_at <= now, oldest first."""
        raise NotImplementedError

    async def find_by_status(
        self, status: NoteStatus | None, page: int, page_size: int
    ) -> tuple[list[Note], int]:
        """One page of notes (newest first) and the total matching count."""
        raise NotImplementedError

    async def close(self):
        pass


class InMemoryNoteStore(NoteStore):
    """Dict-backed store. Hands out copies so callers never share state with it."""

    def __init__(self):
        self._notes: dict[str, Note] = {}

    async def create(self, note: Note) -> Note:
        if note.id in self._notes:
            raise NoteStoreError(f"Note already exists: {note.id}")
        self._notes[note.id] = note.model_copy(deep=True)
        return note

    async def get_by_id(self, note_id: str) -> Note | None:
        stored = self._notes.get(note_id)
        return stored.model_copy(deep=True) if stored else None

    async def save(self, note: Note) -> Note:
        stored = self._notes.get(note.id)
        if stored is None:
            raise NoteNotFoundError(note.id)
        if stored.version != note.version:
            raise StaleNoteError(note.id, note.version)
        note.version += 1
        note.updated_at = utcnow()
        self._notes[note.id] = note.model_copy(deep=True)
        return note

    async def find_due(self, now: datetime, limit: int) -> list[Note]:
        due = [
            n for n in self._notes.values()
            if n.status == NoteStatus.PENDING and n.release_at <= now
        ]
        due.sort(key=lambda n: n.release_at)
        return [n.model_copy(deep=True) for n in due[:limit]]

    async def find_retry_due(self, now: datetime, limit: int) -> list[Note]:
        due = [
            n for n in self._notes.values()
            if n.status == NoteStatus.FAILED and n.next_attempt_at is not None and n.next_attempt_at <= now
        ]
        due.sort(key=lambda n: n.next_attempt_at)
        return [n.model_copy(deep=True) for n in due[:limit]]

    async def find_by_status(self, status, page, page_size):
        notes = [n for n in self._notes.values() if status is None or n.status == status]
        notes.sort(key=lambda n: n.created_at, reverse=True)
        start = (page - 1) * page_size
        return [n.model_copy(deep=True) for n in notes[start:start + page_size]], len(notes)


def record_to_note(record: NoteRecord) -> Note:
    """Convert NoteRecord row (with attempts loaded) to the domain Note."""
    return Note(
        id=record.id,
        title=record.title,
        body=record.body,
        release_at=ensure_utc(record.release_at),
        webhook_url=record.webhook_url,
        status=NoteStatus(record.status),
        attempts=[
            Attempt(at=ensure_utc(a.at), status_code=a.status_code, ok=a.ok, error=a.error)
            for a in record.attempts
        ],
        delivered_at=ensure_utc(record.delivered_at) if record.delivered_at else None,
        cycle=record.cycle,
        cycle_attempts=record.cycle_attempts,
        next_attempt_at=ensure_utc(record.next_attempt_at) if record.next_attempt_at else None,
        version=record.version,
        created_at=ensure_utc(record.created_at) if record.created_at else utcnow(),
        updated_at=ensure_utc(record.updated_at) if record.updated_at else utcnow(),
    )


class SqlNoteStore(NoteStore):
    """
    SQLAlchemy-backed store.

    Each call opens its own session; save() is a conditional UPDATE on
    (id, version) followed by inserting the attempts not yet persisted.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create(self, note: Note) -> Note:
        try:
            async with self.session_factory() as db:
                record = NoteRecord(
                    id=note.id,
                    title=note.title,
                    body=note.body,
                    release_at=note.release_at,
                    webhook_url=note.webhook_url,
                    status=note.status,
                    delivered_at=note.delivered_at,
                    cycle=note.cycle,
                    cycle_attempts=note.cycle_attempts,
                    next_attempt_at=note.next_attempt_at,
                    version=note.version,
                    created_at=note.created_at,
                    updated_at=note.updated_at,
                )
                db.add(record)
                await db.commit()
        except SQLAlchemyError as e:
            raise NoteStoreError(f"Failed to create note {note.id}: {e}") from e
        return note

    async def get_by_id(self, note_id: str) -> Note | None:
        try:
            async with self.session_factory() as db:
                stmt = select(NoteRecord).where(NoteRecord.id == note_id)
                result = await db.execute(stmt)
                record = result.scalar_one_or_none()
                return record_to_note(record) if record else None
        except SQLAlchemyError as e:
            raise NoteStoreError(f"Failed to load note {note_id}: {e}") from e

    async def save(self, note: Note) -> Note:
        now = utcnow()
        try:
            async with self.session_factory() as db:
                stmt = (
                    update(NoteRecord)
                    .where(NoteRecord.id == note.id, NoteRecord.version == note.version)
                    .values(
                        status=note.status,
                        delivered_at=note.delivered_at,
                        cycle=note.cycle,
                        cycle_attempts=note.cycle_attempts,
                        next_attempt_at=note.next_attempt_at,
                        version=note.version + 1,
                        updated_at=now,
                    )
                )
                result = await db.execute(stmt)
                if result.rowcount == 0:
                    await db.rollback()
                    exists = await db.scalar(select(func.count()).select_from(NoteRecord).where(NoteRecord.id == note.id))
                    if not exists:
                        raise NoteNotFoundError(note.id)
                    raise StaleNoteError(note.id, note.version)

                persisted = await db.scalar(
                    select(func.count()).select_from(NoteAttemptRecord).where(NoteAttemptRecord.note_id == note.id)
                )
                for seq, attempt in enumerate(note.attempts[persisted:], start=persisted):
                    db.add(NoteAttemptRecord(
                        note_id=note.id,
                        seq=seq,
                        at=attempt.at,
                        status_code=attempt.status_code,
                        ok=attempt.ok,
                        error=attempt.error,
                    ))
                await db.commit()
        except SQLAlchemyError as e:
            raise NoteStoreError(f"Failed to save note {note.id}: {e}") from e

        note.version += 1
        note.updated_at = now
        return note

    async def find_due(self, now: datetime, limit: int) -> list[Note]:
        stmt = (
            select(NoteRecord)
            .where(NoteRecord.status == NoteStatus.PENDING, NoteRecord.release_at <= now)
            .order_by(NoteRecord.release_at)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def find_retry_due(self, now: datetime, limit: int) -> list[Note]:
        stmt = (
            select(NoteRecord)
            .where(NoteRecord.status == NoteStatus.FAILED, NoteRecord.next_attempt_at <= now)
            .order_by(NoteRecord.next_attempt_at)
            .limit(limit)
        )
        return await self._fetch(stmt)

    async def find_by_status(self, status, page, page_size):
        stmt = select(NoteRecord)
        count_stmt = select(func.count()).select_from(NoteRecord)
        if status is not None:
            stmt = stmt.where(NoteRecord.status == status)
            count_stmt = count_stmt.where(NoteRecord.status == status)
        stmt = stmt.order_by(NoteRecord.created_at.desc()).offset((page - 1) * page_size).limit(page_size)

        notes = await self._fetch(stmt)
        try:
            async with self.session_factory() as db:
                total = await db.scalar(count_stmt)
        except SQLAlchemyError as e:
            raise NoteStoreError(f"Failed to count notes: {e}") from e
        return notes, total or 0

    async def _fetch(self, stmt) -> list[Note]:
        try:
            async with self.session_factory() as db:
                result = await db.execute(stmt)
                return [record_to_note(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise NoteStoreError(f"Note query failed: {e}") from e
