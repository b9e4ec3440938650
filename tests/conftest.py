from __future__ import annotations

import httpx
import pytest

from app.engine.executor import DeliveryExecutor
from app.engine.lifecycle import NoteLifecycle
from app.engine.locks import NoteLocks
from app.engine.retry_policy import RetryPolicy
from app.engine.scheduler import Scheduler
from app.services.note_store import InMemoryNoteStore
from tests.utils import Receiver


@pytest.fixture
def store() -> InMemoryNoteStore:
    return InMemoryNoteStore()


@pytest.fixture
def policy() -> RetryPolicy:
    # Millisecond-scale backoff keeps retry scenarios fast.
    return RetryPolicy(max_attempts=3, base_delay=0.01, multiplier=2.0)


@pytest.fixture
def lifecycle(policy: RetryPolicy) -> NoteLifecycle:
    return NoteLifecycle(policy)


@pytest.fixture
def locks() -> NoteLocks:
    return NoteLocks()


@pytest.fixture
def receiver() -> Receiver:
    return Receiver(200)


@pytest.fixture
async def http_client(receiver: Receiver):
    client = httpx.AsyncClient(transport=httpx.MockTransport(receiver))
    yield client
    await client.aclose()


@pytest.fixture
def executor(http_client: httpx.AsyncClient) -> DeliveryExecutor:
    return DeliveryExecutor(http_client, timeout=1.0)


@pytest.fixture
async def scheduler(store, executor, lifecycle, locks):
    sched = Scheduler(
        store,
        executor,
        lifecycle,
        locks=locks,
        concurrency=5,
        poll_interval=0.05,
        batch_size=100,
    )
    yield sched
    await sched.stop(grace=1.0)
