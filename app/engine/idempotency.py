"""
Idempotency key derivation.

The key depends only on the note id and its scheduled release time, so every
retry and every replay of the same note carries the same token.
"""
import hashlib


def derive_idempotency_key(note_id: str, release_at_iso: str) -> str:
    """Generate SHA-256 idempotency key (64 lowercase hex chars) from note id and releaseAt."""
    data = f"{note_id}:{release_at_iso}"
    return hashlib.sha256(data.encode()).hexdigest()
