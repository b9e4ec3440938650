"""
Delivery worker for DropLater.

Hosts the Scheduler. Run under arq to also receive event-driven admissions
pushed by the API:

    arq app.worker.WorkerSettings

or standalone with polling discovery only:

    python -m app.worker
"""
import asyncio
import signal

import httpx
from arq.connections import RedisSettings

from app.config import settings
from app.database import AsyncSessionLocal, engine
from app.engine.executor import DeliveryExecutor
from app.engine.lifecycle import NoteLifecycle
from app.engine.locks import NoteLocks
from app.engine.replay import ReplayController
from app.engine.retry_policy import RetryPolicy
from app.engine.scheduler import Scheduler, Trigger
from app.logging_config import configure_logging, get_logger
from app.sentry_config import configure_sentry
from app.services.note_store import SqlNoteStore


logger = get_logger(component="worker")


async def build_runtime(store=None, client: httpx.AsyncClient | None = None) -> dict:
    """
    Wire the engine components. Every shared handle is created here and
    passed through constructors; `close_runtime` tears them down.
    """
    client = client or httpx.AsyncClient(follow_redirects=False)
    store = store or SqlNoteStore(AsyncSessionLocal)
    lifecycle = NoteLifecycle(RetryPolicy.from_settings(settings))
    locks = NoteLocks()
    executor = DeliveryExecutor(client, timeout=settings.DELIVERY_TIMEOUT_SECONDS)
    scheduler = Scheduler.from_settings(settings, store, executor, lifecycle, locks=locks)
    replay = ReplayController(store, lifecycle, scheduler, locks=locks)
    return {
        "http_client": client,
        "store": store,
        "lifecycle": lifecycle,
        "scheduler": scheduler,
        "replay": replay,
    }


async def close_runtime(runtime: dict):
    await runtime["scheduler"].stop(grace=settings.SHUTDOWN_GRACE_SECONDS)
    await runtime["http_client"].aclose()
    await runtime["store"].close()


async def startup(ctx: dict):
    """arq on_startup: build the engine and run the recovery sweep."""
    configure_logging("worker")
    configure_sentry("worker")
    runtime = await build_runtime()
    # A store that is unreachable here is fatal for the worker.
    await runtime["scheduler"].start()
    ctx.update(runtime)
    logger.info("worker_started", redis=settings.REDIS_URL, concurrency=settings.WORKER_CONCURRENCY)


async def shutdown(ctx: dict):
    """arq on_shutdown: drain in-flight deliveries and close connections."""
    logger.info("worker_shutting_down")
    await close_runtime(ctx)
    await engine.dispose()


async def admit_note(ctx: dict, note_id: str, trigger: str = Trigger.EVENT.value) -> dict:
    """Event-driven admission pushed by the API (note creation or replay)."""
    scheduler: Scheduler = ctx["scheduler"]
    # arq defers the job to the release time; the Scheduler re-checks it so an
    # early wakeup still never attempts before releaseAt.
    admitted = await scheduler.admit(note_id, Trigger(trigger))
    return {"note_id": note_id, "admitted": admitted}



class WorkerSettings:
    """Settings for ARQ worker - use with 'arq app.worker.WorkerSettings'"""
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = [admit_note]
    on_startup = startup
    on_shutdown = shutdown
    # Admission only hands work to the Scheduler; delivery concurrency is the Scheduler's pool.
    job_timeout = 60
    max_tries = 3


async def main():
    """Run the Scheduler with polling discovery only, until SIGINT/SIGTERM."""
    configure_logging("worker")
    configure_sentry("worker")

    runtime = await build_runtime()
    await runtime["scheduler"].start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("worker_started", mode="polling", poll_interval=settings.POLL_INTERVAL_SECONDS)
    await stop.wait()

    logger.info("worker_shutting_down")
    await close_runtime(runtime)
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
