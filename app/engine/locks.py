"""
Per-note mutual exclusion.

Every read-modify-write of a note inside this process happens while holding
the note's lock, so a retry and a replay for the same note never interleave.
Across processes the store's optimistic version check is the backstop.
"""
import asyncio
from contextlib import asynccontextmanager


class NoteLocks:
    """Registry of asyncio locks keyed by note id, released when unused."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, note_id: str):
        lock = self._locks.get(note_id)
        if lock is None:
            lock = self._locks[note_id] = asyncio.Lock()
        self._waiters[note_id] = self._waiters.get(note_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[note_id] -= 1
            if self._waiters[note_id] == 0:
                del self._waiters[note_id]
                del self._locks[note_id]

    def __len__(self):
        return len(self._locks)
