"""
Scheduler / Dispatcher

Discovers due notes and drives each one through the executor and the
lifecycle, re-presenting failed notes after the retry delay.

Every trigger source (polling sweep, event push, retry timer, replay) goes
through `admit()`. Admission is keyed by a deterministic work-item key, so a
redundant discovery of the same attempt is dropped instead of dispatched twice.
Execution happens under the per-note lock and re-checks that the note still
expects exactly that attempt; anything else is a stale work item and a no-op.
"""
import asyncio
import enum
from datetime import datetime, timedelta
from typing import Callable

from app.engine.errors import NoteStoreError, StaleNoteError
from app.engine.executor import DeliveryExecutor
from app.engine.lifecycle import NoteLifecycle
from app.engine.locks import NoteLocks
from app.engine.notes import Note, NoteStatus, epoch_millis, utcnow
from app.logging_config import get_logger
from app.routes.metrics import (
    deliveries_in_flight,
    track_note_dead,
    track_note_delivered,
    track_store_write_failure,
)
from app.sentry_config import capture_exception, capture_message


DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_BATCH_SIZE = 100
DEFAULT_CONCURRENCY = 5

logger = get_logger(component="scheduler")


class Trigger(str, enum.Enum):
    """What caused a note to be admitted."""
    POLL = "poll"
    EVENT = "event"
    RETRY = "retry"
    REPLAY = "replay"


def work_item_key(note: Note, attempt_number: int) -> str:
    """Identity of one scheduled attempt: note, scheduled time, cycle and attempt number."""
    return f"note:{note.id}:{epoch_millis(note.release_at)}:c{note.cycle}:a{attempt_number}"


class Scheduler:
    """
    Process-wide dispatcher with an explicit start/stop lifecycle.

    Concurrency across notes is bounded by a semaphore of `concurrency` slots;
    waiting for a release time or a retry delay holds no slot.
    """

    def __init__(
        self,
        store,
        executor: DeliveryExecutor,
        lifecycle: NoteLifecycle,
        locks: NoteLocks | None = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.executor = executor
        self.lifecycle = lifecycle
        self.locks = locks or NoteLocks()
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.clock = clock

        self._slots = asyncio.Semaphore(concurrency)
        self._tasks: dict[str, asyncio.Task] = {}
        self._in_flight: set[str] = set()
        self._poll_task: asyncio.Task | None = None
        self._stop_event = asyncio.Event()
        self._stopping = False

    @classmethod
    def from_settings(cls, settings, store, executor, lifecycle, locks=None) -> "Scheduler":
        return cls(
            store,
            executor,
            lifecycle,
            locks=locks,
            concurrency=settings.WORKER_CONCURRENCY,
            poll_interval=settings.POLL_INTERVAL_SECONDS,
            batch_size=settings.POLL_BATCH_SIZE,
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    @property
    def admitted_keys(self) -> frozenset[str]:
        return frozenset(self._tasks)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def admit(
        self,
        note_id: str,
        trigger: Trigger = Trigger.EVENT,
        delay: float | None = None,
        note: Note | None = None,
    ) -> bool:
        """
        Admit the note's next attempt for execution.

        `delay=None` waits until the note's release time (event trigger) or
        runs immediately when it has passed. Returns False when the note is
        unknown, not attemptable, already admitted, or the scheduler is stopping.
        """
        log = logger.bind(note_id=note_id, trigger=trigger.value)
        if self._stopping:
            log.info("admission_rejected_stopping")
            return False

        if note is None:
            note = await self.store.get_by_id(note_id)
            if note is None:
                log.warning("admission_note_not_found")
                return False

        if not self.lifecycle.can_attempt(note):
            log.info("admission_skipped", status=note.status.value)
            return False

        attempt_number = self.lifecycle.next_attempt_number(note)
        key = work_item_key(note, attempt_number)
        if key in self._tasks:
            log.info("admission_duplicate", work_key=key)
            return False

        if delay is None:
            delay = (note.release_at - self.clock()).total_seconds()
        delay = max(0.0, delay)

        not_before = self.clock() + timedelta(seconds=delay)
        self._tasks[key] = asyncio.create_task(
            self._run(key, note.id, note.cycle, attempt_number, trigger, not_before),
            name=key,
        )
        log.info("note_admitted", work_key=key, delay_seconds=round(delay, 3))
        return True

    async def _run(self, key: str, note_id: str, cycle: int, attempt_number: int, trigger: Trigger, not_before: datetime):
        log = logger.bind(note_id=note_id, trigger=trigger.value, attempt=attempt_number)
        try:
            await self._sleep_until(not_before)
            async with self._slots:
                self._in_flight.add(key)
                deliveries_in_flight.inc()
                try:
                    await self._process(note_id, cycle, attempt_number, trigger)
                finally:
                    self._in_flight.discard(key)
                    deliveries_in_flight.dec()
        except asyncio.CancelledError:
            log.info("work_item_cancelled", work_key=key)
            raise
        except NoteStoreError as e:
            # Halts this note's cycle; the next sweep re-discovers it.
            log.error("note_store_read_failed", error=str(e))
            capture_exception(e, note_id=note_id, work_key=key)
        except Exception as e:
            log.exception("work_item_crashed", error=str(e))
            capture_exception(e, note_id=note_id, work_key=key)
        finally:
            self._tasks.pop(key, None)

    async def _sleep_until(self, not_before: datetime):
        # Timer wakeups can land slightly early; never start before not_before.
        remaining = (not_before - self.clock()).total_seconds()
        while remaining > 0:
            await asyncio.sleep(remaining)
            remaining = (not_before - self.clock()).total_seconds()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _process(self, note_id: str, cycle: int, attempt_number: int, trigger: Trigger):
        """One attempt for one note, serialized with every other writer of that note."""
        log = logger.bind(note_id=note_id, trigger=trigger.value, attempt=attempt_number)

        async with self.locks.hold(note_id):
            note = await self.store.get_by_id(note_id)
            if note is None:
                log.warning("note_disappeared")
                return
            if note.status == NoteStatus.DELIVERED:
                log.info("note_already_delivered_skipping")
                return
            if (
                note.cycle != cycle
                or self.lifecycle.next_attempt_number(note) != attempt_number
                or not self.lifecycle.can_attempt(note)
            ):
                log.info(
                    "stale_work_item_skipped",
                    status=note.status.value,
                    cycle=note.cycle,
                    cycle_attempts=note.cycle_attempts,
                )
                return

            attempt = await self.executor.attempt(note)
            if attempt is None:
                return

            decision = self.lifecycle.record_attempt(note, attempt, now=self.clock())
            try:
                await self.store.save(note)
            except NoteStoreError as e:
                # The attempt went out but is not recorded: a restart may redeliver.
                track_store_write_failure()
                log.error(
                    "note_store_write_failed",
                    error=str(e),
                    stale=isinstance(e, StaleNoteError),
                    status_code=attempt.status_code,
                    ok=attempt.ok,
                )
                capture_exception(e, note_id=note_id, attempt=attempt_number)
                return

        if decision is None:
            track_note_delivered()
            log.info("note_delivered", status_code=attempt.status_code)
        elif decision.should_retry:
            log.warning(
                "note_retry_scheduled",
                status_code=attempt.status_code,
                error=attempt.error,
                delay_seconds=decision.delay,
            )
            await self.admit(note.id, Trigger.RETRY, delay=decision.delay, note=note)
        else:
            track_note_dead()
            log.error(
                "note_dead",
                status_code=attempt.status_code,
                error=attempt.error,
                attempts=len(note.attempts),
            )
            capture_message("note_dead", level="warning", note_id=note.id, cycle=note.cycle)

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def run_once(self) -> int:
        """
        One polling sweep: admit due pending notes, then failed notes whose
        retry time has passed, at most `batch_size` in total.

        Returns how many notes were newly admitted. Store errors propagate.
        """
        now = self.clock()
        due = await self.store.find_due(now, self.batch_size)
        remaining = self.batch_size - len(due)
        retry_due = await self.store.find_retry_due(now, remaining) if remaining > 0 else []

        if due or retry_due:
            logger.info("sweep_found_due_notes", due=len(due), retry_due=len(retry_due))

        admitted = 0
        for note in due:
            if await self.admit(note.id, Trigger.POLL, delay=0.0, note=note):
                admitted += 1
        for note in retry_due:
            if await self.admit(note.id, Trigger.RETRY, delay=0.0, note=note):
                admitted += 1
        return admitted

    async def _poll_loop(self):
        while not self._stopping:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.poll_interval)
                return
            except asyncio.TimeoutError:
                pass

            try:
                await self.run_once()
            except NoteStoreError as e:
                logger.error("sweep_failed", error=str(e))
                capture_exception(e)
            except Exception as e:
                logger.exception("sweep_crashed", error=str(e))
                capture_exception(e)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self):
        """
        Run the recovery sweep, then start polling.

        A store failure during the recovery sweep propagates: the process
        cannot operate without its store.
        """
        self._stopping = False
        self._stop_event.clear()
        admitted = await self.run_once()
        logger.info(
            "scheduler_started",
            recovered=admitted,
            concurrency=self.concurrency,
            poll_interval=self.poll_interval,
            batch_size=self.batch_size,
        )
        self._poll_task = asyncio.create_task(self._poll_loop(), name="droplater-poll")

    async def stop(self, grace: float = 35.0):
        """
        Stop discovery, drop waiting work items, let in-flight deliveries finish.

        Deliveries still running after `grace` seconds are cancelled.
        """
        self._stopping = True
        self._stop_event.set()

        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None

        running = []
        for key, task in list(self._tasks.items()):
            if key in self._in_flight:
                running.append(task)
            else:
                task.cancel()

        if running:
            logger.info("scheduler_draining", in_flight=len(running))
            _, still_running = await asyncio.wait(running, timeout=grace)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning("scheduler_drain_timeout", cancelled=len(still_running))

        await asyncio.gather(*self._tasks.values(), return_exceptions=True)
        logger.info("scheduler_stopped")

    async def join(self, timeout: float | None = None):
        """Wait until no work items are admitted (retries included)."""
        async def _drain():
            while self._tasks:
                await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

        await asyncio.wait_for(_drain(), timeout=timeout)
