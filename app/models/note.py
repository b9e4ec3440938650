"""
Note persistence models.

Tables backing the record store: one row per note plus an append-only
attempt history ordered by sequence number.
"""
from datetime import datetime
from sqlalchemy import String, Text, Integer, Boolean, DateTime, ForeignKey, Index, UniqueConstraint, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from app.models.base import Base, TimestampMixin
from app.engine.notes import NoteStatus


class NoteRecord(Base, TimestampMixin):
    """
    Scheduled note row.

    `version` is bumped on every save and checked on update (optimistic locking).
    """
    __tablename__ = "notes"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    release_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    webhook_url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[NoteStatus] = mapped_column(
        SQLEnum(NoteStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=NoteStatus.PENDING,
        index=True
    )
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cycle: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cycle_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    attempts = relationship(
        "NoteAttemptRecord",
        order_by="NoteAttemptRecord.seq",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    __table_args__ = (
        Index("ix_notes_status_release_at", "status", "release_at"),
    )

    def __repr__(self):
        return f"<NoteRecord(id={self.id}, status={self.status}, version={self.version})>"


class NoteAttemptRecord(Base):
    """One delivery attempt. Never updated once written."""
    __tablename__ = "note_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    note_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("notes.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status_code: Mapped[int] = mapped_column(Integer, nullable=False)
    ok: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("note_id", "seq", name="uq_note_attempts_note_seq"),
    )
