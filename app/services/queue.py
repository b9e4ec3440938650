"""
Queue admission over arq.

The front door does not run a scheduler; it pushes `admit_note` jobs into the
worker's Redis queue. The arq job id is the work-item key, so the same attempt
is never queued twice, and the job is deferred until the note's release time.
"""
from datetime import datetime
from typing import Callable

from arq import ArqRedis, create_pool
from arq.connections import RedisSettings

from app.engine.lifecycle import NoteLifecycle
from app.engine.notes import Note, utcnow
from app.engine.scheduler import Trigger, work_item_key
from app.logging_config import get_logger


ADMIT_NOTE_JOB = "admit_note"

logger = get_logger(component="queue")


class QueueAdmission:
    """Enqueues admission jobs for the worker process."""

    def __init__(self, redis: ArqRedis, lifecycle: NoteLifecycle, clock: Callable[[], datetime] = utcnow):
        self.redis = redis
        self.lifecycle = lifecycle
        self.clock = clock

    @classmethod
    async def connect(cls, redis_url: str, lifecycle: NoteLifecycle) -> "QueueAdmission":
        redis = await create_pool(RedisSettings.from_dsn(redis_url))
        return cls(redis, lifecycle)

    async def admit(
        self,
        note_id: str,
        trigger: Trigger = Trigger.EVENT,
        delay: float | None = None,
        note: Note | None = None,
    ) -> bool:
        """Queue the note's next attempt. Returns False if that attempt is already queued."""
        if note is None:
            raise ValueError("QueueAdmission needs the note to derive its work-item key")
        if not self.lifecycle.can_attempt(note):
            return False

        key = work_item_key(note, self.lifecycle.next_attempt_number(note))
        if delay is None:
            delay = (note.release_at - self.clock()).total_seconds()
        delay = max(0.0, delay)

        job = await self.redis.enqueue_job(
            ADMIT_NOTE_JOB,
            note_id,
            trigger.value,
            _job_id=key,
            _defer_by=delay,
        )
        if job is None:
            logger.info("admission_duplicate", note_id=note_id, work_key=key)
            return False

        logger.info("note_enqueued", note_id=note_id, work_key=key, trigger=trigger.value, delay_seconds=round(delay, 3))
        return True

    async def close(self):
        await self.redis.aclose()
