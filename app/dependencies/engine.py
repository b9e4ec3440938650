"""
Engine handles for FastAPI routes.

The handles are created once in the application lifespan and stored on
`app.state`; routes receive them through these dependencies.
"""
from fastapi import Request

from app.engine.replay import ReplayController
from app.services.note_store import NoteStore


def get_note_store(request: Request) -> NoteStore:
    return request.app.state.note_store


def get_admission(request: Request):
    return request.app.state.admission


def get_replay_controller(request: Request) -> ReplayController:
    return request.app.state.replay
