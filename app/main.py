"""
DropLater - scheduled webhook delivery

FastAPI application entry point.
"""
from contextlib import asynccontextmanager
from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

# Import observability modules
from app.config import settings
from app.logging_config import configure_logging, get_logger
from app.sentry_config import configure_sentry
from app.middleware.logging import LoggingMiddleware
from app.routes.metrics import router as metrics_router

# Import route modules
from app.routes.notes import router as notes_router

from app.database import AsyncSessionLocal, engine
from app.engine.errors import NoteStoreError
from app.engine.lifecycle import NoteLifecycle
from app.engine.replay import ReplayController
from app.engine.retry_policy import RetryPolicy
from app.services.note_store import SqlNoteStore
from app.services.queue import QueueAdmission
from app.services.rate_limiter import rate_limiter

logger = get_logger(component="api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the process-wide handles on startup, close them on shutdown."""
    owned = not hasattr(app.state, "note_store")
    if owned:
        lifecycle = NoteLifecycle(RetryPolicy.from_settings(settings))
        app.state.note_store = SqlNoteStore(AsyncSessionLocal)
        app.state.admission = await QueueAdmission.connect(settings.REDIS_URL, lifecycle)
        app.state.replay = ReplayController(app.state.note_store, lifecycle, app.state.admission)
        logger.info("api_started", environment=settings.ENVIRONMENT)
    yield
    if owned:
        await app.state.admission.close()
        await rate_limiter.close()
        await engine.dispose()


def create_app() -> FastAPI:
    # Initialize logging first
    configure_logging("api")
    
    # Initialize Sentry (if SENTRY_DSN is set)
    configure_sentry("api")
    
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Schedule notes for future delivery to webhooks, with retries and replay",
        lifespan=lifespan,
    )
    
    # Add logging middleware FIRST (runs before other middleware)
    app.add_middleware(LoggingMiddleware)
    
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    
    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "Invalid request data",
                "details": [
                    f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
                    for err in exc.errors()
                ],
            },
        )
    
    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        # Routes raise with {"error", "details"}; anything else gets the status phrase as title.
        if isinstance(exc.detail, dict) and "error" in exc.detail:
            content = exc.detail
        else:
            content = {"error": HTTPStatus(exc.status_code).phrase, "details": [str(exc.detail)]}
        return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)
    
    @app.exception_handler(NoteStoreError)
    async def store_error_handler(request: Request, exc: NoteStoreError):
        logger.error("note_store_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=503,
            content={"error": "Note store unavailable", "details": ["Please try again later"]},
        )
    
    # Include metrics endpoint FIRST (so it's always available)
    app.include_router(metrics_router)
    
    # Include notes routes
    app.include_router(notes_router)
    
    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"ok": True}
    
    return app


app = create_app()
