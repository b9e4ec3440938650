"""
Domain types for scheduled notes and their delivery attempts.

These are the engine's view of a note, independent of how the record store
persists it.
"""
import enum
import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class NoteStatus(str, enum.Enum):
    """Note lifecycle status."""
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    DEAD = "dead"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: datetime) -> str:
    """Render as `2024-01-01T00:00:00.000Z` (millisecond precision)."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def epoch_millis(value: datetime) -> int:
    value = ensure_utc(value)
    return int(value.timestamp()) * 1000 + value.microsecond // 1000


class Attempt(BaseModel):
    """Immutable record of one delivery try."""
    model_config = ConfigDict(frozen=True)

    at: datetime
    status_code: int  # 0 = transport failure, no response
    ok: bool
    error: str | None = None


class Note(BaseModel):
    """
    The unit of scheduled work.

    `status`, `attempts`, `delivered_at`, `cycle`, `cycle_attempts` and
    `next_attempt_at` are only ever changed through `NoteLifecycle`.
    """
    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    title: str
    body: str
    release_at: datetime
    webhook_url: str
    status: NoteStatus = NoteStatus.PENDING
    attempts: list[Attempt] = Field(default_factory=list)
    delivered_at: datetime | None = None

    # Delivery cycle bookkeeping: the retry budget applies per cycle,
    # a replay starts a new cycle while history stays cumulative.
    cycle: int = 1
    cycle_attempts: int = 0
    next_attempt_at: datetime | None = None

    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def release_at_iso(self) -> str:
        return isoformat_utc(self.release_at)

    def to_public_dict(self) -> dict:
        """Shape used by the front door listing."""
        return {
            "id": self.id,
            "title": self.title,
            "body": self.body,
            "releaseAt": isoformat_utc(self.release_at),
            "webhookUrl": self.webhook_url,
            "status": self.status.value,
            "attempts": [
                {
                    "at": isoformat_utc(a.at),
                    "statusCode": a.status_code,
                    "ok": a.ok,
                    "error": a.error,
                }
                for a in self.attempts
            ],
            "deliveredAt": isoformat_utc(self.delivered_at) if self.delivered_at else None,
            "createdAt": isoformat_utc(self.created_at),
            "updatedAt": isoformat_utc(self.updated_at),
        }
