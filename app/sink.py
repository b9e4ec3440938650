"""
Reference receiving endpoint.

Shows the contract a webhook receiver must honor: acknowledge with 2xx and
deduplicate by `X-Idempotency-Key`, because the engine may deliver the same
key more than once.

    uvicorn app.sink:app --port 4000
"""
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.engine.notes import isoformat_utc, utcnow
from app.logging_config import configure_logging, get_logger
from app.middleware.logging import LoggingMiddleware

logger = get_logger(component="sink")


@asynccontextmanager
async def lifespan(app: FastAPI):
    owned = not hasattr(app.state, "redis")
    if owned:
        app.state.redis = redis.from_url(settings.REDIS_URL)
    if not hasattr(app.state, "simulate_failure"):
        app.state.simulate_failure = settings.SINK_SIMULATE_FAILURE
    logger.info("sink_started", simulate_failure=app.state.simulate_failure)
    yield
    if owned:
        await app.state.redis.aclose()


def create_sink_app() -> FastAPI:
    configure_logging("sink")

    app = FastAPI(title=f"{settings.APP_NAME} Sink", version=settings.APP_VERSION, lifespan=lifespan)
    app.add_middleware(LoggingMiddleware)

    @app.post("/sink")
    async def receive(
        request: Request,
        x_idempotency_key: str | None = Header(None),
        x_note_id: str | None = Header(None),
    ):
        """Accept a delivery once per idempotency key."""
        if not x_idempotency_key:
            logger.warning("missing_idempotency_key", note_id=x_note_id)
            return JSONResponse(status_code=400, content={"error": "Missing X-Idempotency-Key header"})
        if not x_note_id:
            logger.warning("missing_note_id", idempotency_key=x_idempotency_key)
            return JSONResponse(status_code=400, content={"error": "Missing X-Note-Id header"})

        if getattr(request.app.state, "simulate_failure", False):
            logger.error("simulating_failure", note_id=x_note_id, idempotency_key=x_idempotency_key)
            return JSONResponse(status_code=500, content={"error": "Simulated failure"})

        # Parse before marking the key, so a rejected body can be redelivered.
        try:
            payload = await request.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            logger.warning("invalid_payload", note_id=x_note_id, idempotency_key=x_idempotency_key)
            return JSONResponse(status_code=400, content={"error": "Request body must be a JSON object"})

        try:
            was_set = await request.app.state.redis.set(
                f"idempotency:{x_idempotency_key}",
                "1",
                nx=True,
                ex=settings.SINK_DEDUP_TTL_SECONDS,
            )
        except redis.RedisError as e:
            logger.error("sink_dedup_store_failed", note_id=x_note_id, error=str(e))
            return JSONResponse(status_code=500, content={"error": "Failed to process webhook"})

        if not was_set:
            logger.info("duplicate_delivery", note_id=x_note_id, idempotency_key=x_idempotency_key)
            return {"message": "Already processed", "duplicate": True}

        body = payload.get("body") or ""
        logger.info(
            "webhook_received",
            note_id=x_note_id,
            idempotency_key=x_idempotency_key,
            title=payload.get("title"),
            delivered_at=payload.get("deliveredAt"),
            body=f"{body[:50]}..." if body else None,
        )
        return {
            "message": "Webhook processed successfully",
            "noteId": x_note_id,
            "receivedAt": isoformat_utc(utcnow()),
        }

    @app.post("/toggle-failure")
    async def toggle_failure(request: Request):
        request.app.state.simulate_failure = not getattr(request.app.state, "simulate_failure", False)
        logger.info("failure_simulation_toggled", simulate_failure=request.app.state.simulate_failure)
        return {"message": "Failure simulation toggled", "simulateFailure": request.app.state.simulate_failure}

    @app.get("/health")
    async def health():
        return {"ok": True, "service": "sink"}

    return app


app = create_sink_app()
