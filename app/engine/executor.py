"""
Delivery Executor

Performs one outbound delivery attempt for a note and classifies the outcome.
Never mutates persisted state; the scheduler records the returned Attempt.
"""
import json
import time

import httpx

from app.engine.idempotency import derive_idempotency_key
from app.engine.notes import Attempt, Note, NoteStatus, isoformat_utc, utcnow
from app.logging_config import get_logger
from app.routes.metrics import track_delivery_attempt


DEFAULT_TIMEOUT_SECONDS = 30.0

logger = get_logger(component="executor")


def build_delivery_request(note: Note, delivered_at: str) -> tuple[dict, str]:
    """
    Build headers and JSON body for the receiving endpoint.

    Returns (headers, payload_str).
    """
    idempotency_key = derive_idempotency_key(note.id, note.release_at_iso)
    payload = {
        "id": note.id,
        "title": note.title,
        "body": note.body,
        "releaseAt": note.release_at_iso,
        "deliveredAt": delivered_at,
    }
    headers = {
        "Content-Type": "application/json",
        "X-Note-Id": note.id,
        "X-Idempotency-Key": idempotency_key,
    }
    return headers, json.dumps(payload)


def classify_response(status_code: int, at) -> Attempt:
    """2xx is success; anything else is a failed, retryable outcome."""
    if 200 <= status_code < 300:
        return Attempt(at=at, status_code=status_code, ok=True)
    return Attempt(at=at, status_code=status_code, ok=False, error=f"HTTP {status_code}")


def classify_transport_error(exc: Exception, at) -> Attempt:
    """Network-level failures have no response: status code 0."""
    if isinstance(exc, httpx.TimeoutException):
        description = f"Timeout: {exc}" if str(exc) else "Timeout"
    elif isinstance(exc, httpx.ConnectError):
        description = f"Connection failed: {exc}"
    else:
        description = f"{type(exc).__name__}: {exc}"
    return Attempt(at=at, status_code=0, ok=False, error=description)


class DeliveryExecutor:
    """
    Sends a note to its webhook URL.

    The HTTP client is owned by the caller so connection pools live for the
    whole process and are closed on shutdown.
    """

    def __init__(self, client: httpx.AsyncClient, timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.client = client
        self.timeout = timeout

    async def attempt(self, note: Note) -> Attempt | None:
        """
        Make one delivery attempt.

        Returns None without touching the network when the note is already
        delivered, otherwise the classified Attempt.
        """
        if note.status == NoteStatus.DELIVERED:
            logger.info("note_already_delivered_skipping", note_id=note.id)
            return None

        at = utcnow()
        headers, payload_str = build_delivery_request(note, isoformat_utc(at))
        start_time = time.monotonic()

        try:
            response = await self.client.post(
                note.webhook_url,
                content=payload_str,
                headers=headers,
                timeout=self.timeout,
            )
            attempt = classify_response(response.status_code, at)
        except Exception as e:
            attempt = classify_transport_error(e, at)

        duration = time.monotonic() - start_time
        track_delivery_attempt(attempt.ok, attempt.status_code, duration)

        log = logger.bind(
            note_id=note.id,
            status_code=attempt.status_code,
            duration_ms=round(duration * 1000, 2),
        )
        if attempt.ok:
            log.info("delivery_attempt_succeeded")
        else:
            log.warning("delivery_attempt_failed", error=attempt.error)
        return attempt
