"""
Notes API routes.

Create scheduled notes, list them by status, and replay failed deliveries.
"""
import math
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AnyHttpUrl, AwareDatetime, BaseModel, Field, TypeAdapter, ValidationError, field_validator

from app.config import settings
from app.dependencies.auth import require_admin_token
from app.dependencies.engine import get_admission, get_note_store, get_replay_controller
from app.dependencies.rate_limit import check_rate_limit
from app.engine.errors import InvalidStateError, NoteNotFoundError
from app.engine.notes import Note, NoteStatus, ensure_utc
from app.engine.replay import ReplayController
from app.engine.scheduler import Trigger
from app.logging_config import get_logger
from app.services.note_store import NoteStore


router = APIRouter(
    prefix="/api/notes",
    tags=["notes"],
    dependencies=[Depends(check_rate_limit), Depends(require_admin_token)],
)

logger = get_logger(component="notes_api")

_http_url = TypeAdapter(AnyHttpUrl)


class CreateNoteRequest(BaseModel):
    """Request model for creating a note."""
    title: str = Field(min_length=1, max_length=200)
    body: str = Field(min_length=1, max_length=5000)
    releaseAt: AwareDatetime
    webhookUrl: str

    @field_validator("title", "body", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("webhookUrl")
    @classmethod
    def check_webhook_url(cls, value: str) -> str:
        # Validated as an absolute http(s) URL, stored exactly as sent.
        try:
            _http_url.validate_python(value)
        except ValidationError:
            raise ValueError("must be an absolute http(s) URL")
        return value


class CreateNoteResponse(BaseModel):
    id: str


class ReplayResponse(BaseModel):
    message: str
    id: str


@router.post("", status_code=status.HTTP_201_CREATED, response_model=CreateNoteResponse)
async def create_note(
    request: CreateNoteRequest,
    store: NoteStore = Depends(get_note_store),
    admission=Depends(get_admission),
):
    """
    Schedule a note for delivery at `releaseAt`.
    
    Returns the generated id. Delivery happens in the worker.
    """
    note = Note(
        title=request.title,
        body=request.body,
        release_at=ensure_utc(request.releaseAt),
        webhook_url=request.webhookUrl,
    )
    await store.create(note)
    
    # Polling picks the note up anyway if the push fails.
    try:
        await admission.admit(note.id, Trigger.EVENT, note=note)
    except Exception as e:
        logger.warning("note_enqueue_failed", note_id=note.id, error=str(e))
    
    logger.info("note_created", note_id=note.id, release_at=note.release_at_iso)
    return CreateNoteResponse(id=note.id)


@router.get("", response_model=dict)
async def list_notes(
    status_filter: Optional[NoteStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    store: NoteStore = Depends(get_note_store),
):
    """
    List notes, newest first, 20 per page, optionally filtered by status.
    """
    page_size = settings.PAGE_SIZE
    notes, total = await store.find_by_status(status_filter, page, page_size)
    
    return {
        "notes": [note.to_public_dict() for note in notes],
        "pagination": {
            "page": page,
            "pageSize": page_size,
            "total": total,
            "pages": math.ceil(total / page_size),
        },
    }


@router.post("/{note_id}/replay", response_model=ReplayResponse)
async def replay_note(
    note_id: str,
    replay: ReplayController = Depends(get_replay_controller),
):
    """
    Re-queue a failed or dead note for immediate delivery.
    """
    try:
        await replay.replay(note_id)
    except NoteNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "Note not found", "details": ["No note found with the specified ID"]},
        )
    except InvalidStateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": f"Cannot replay {e.status} note", "details": [str(e)]},
        )
    
    return ReplayResponse(message="Note queued for replay", id=note_id)
