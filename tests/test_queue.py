from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.engine.notes import NoteStatus
from app.engine.scheduler import Trigger, work_item_key
from app.services.queue import ADMIT_NOTE_JOB, QueueAdmission
from app.worker import admit_note
from tests.utils import make_note


NOW = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class StubArqRedis:
    """Records enqueue_job calls; a repeated job id is refused like arq does."""

    def __init__(self):
        self.jobs = {}
        self.closed = False

    async def enqueue_job(self, function, *args, _job_id=None, _defer_by=None, **kwargs):
        if _job_id in self.jobs:
            return None
        self.jobs[_job_id] = {"function": function, "args": args, "defer_by": _defer_by}
        return object()

    async def aclose(self):
        self.closed = True


@pytest.fixture
def arq_redis() -> StubArqRedis:
    return StubArqRedis()


@pytest.fixture
def queue(arq_redis, lifecycle) -> QueueAdmission:
    return QueueAdmission(arq_redis, lifecycle, clock=lambda: NOW)


@pytest.mark.asyncio
async def test_future_note_deferred_until_release(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    note = make_note(release_at=NOW + timedelta(seconds=90))

    assert await queue.admit(note.id, Trigger.EVENT, note=note) is True

    key = work_item_key(note, 1)
    assert list(arq_redis.jobs) == [key]
    job = arq_redis.jobs[key]
    assert job["function"] == ADMIT_NOTE_JOB
    assert job["args"] == (note.id, "event")
    assert job["defer_by"] == 90.0


@pytest.mark.asyncio
async def test_past_due_note_enqueued_without_delay(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    note = make_note(release_at=NOW - timedelta(minutes=5))

    await queue.admit(note.id, Trigger.EVENT, note=note)

    assert arq_redis.jobs[work_item_key(note, 1)]["defer_by"] == 0.0


@pytest.mark.asyncio
async def test_same_attempt_is_queued_once(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    note = make_note(release_at=NOW + timedelta(seconds=10))

    assert await queue.admit(note.id, Trigger.EVENT, note=note) is True
    assert await queue.admit(note.id, Trigger.EVENT, note=note) is False
    assert len(arq_redis.jobs) == 1


@pytest.mark.asyncio
async def test_replayed_note_gets_new_cycle_key(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    note = make_note(release_at=NOW - timedelta(hours=1), status=NoteStatus.PENDING, cycle=2)

    assert await queue.admit(note.id, Trigger.REPLAY, delay=0.0, note=note) is True

    key = work_item_key(note, 1)
    assert key.endswith(":c2:a1")
    assert arq_redis.jobs[key]["args"] == (note.id, "replay")


@pytest.mark.asyncio
async def test_delivered_note_not_queued(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    note = make_note(release_at=NOW, status=NoteStatus.DELIVERED, delivered_at=NOW)

    assert await queue.admit(note.id, Trigger.EVENT, note=note) is False
    assert arq_redis.jobs == {}


@pytest.mark.asyncio
async def test_admission_requires_note(queue: QueueAdmission) -> None:
    with pytest.raises(ValueError):
        await queue.admit("some-id", Trigger.EVENT)


@pytest.mark.asyncio
async def test_close_releases_pool(queue: QueueAdmission, arq_redis: StubArqRedis) -> None:
    await queue.close()
    assert arq_redis.closed is True


@pytest.mark.asyncio
async def test_worker_job_hands_note_to_scheduler(scheduler, store, receiver) -> None:
    note = await store.create(make_note(-1))

    result = await admit_note({"scheduler": scheduler}, note.id, "event")
    await scheduler.join(timeout=5)

    assert result == {"note_id": note.id, "admitted": True}
    assert (await store.get_by_id(note.id)).status == NoteStatus.DELIVERED
    assert len(receiver.requests) == 1
