from __future__ import annotations

import re

from app.engine.idempotency import derive_idempotency_key


NOTE_ID = "507f1f77bcf86cd799439011"
RELEASE_AT = "2024-01-01T00:00:00.000Z"


def test_same_input_gives_same_key() -> None:
    assert derive_idempotency_key(NOTE_ID, RELEASE_AT) == derive_idempotency_key(NOTE_ID, RELEASE_AT)


def test_key_is_64_lowercase_hex() -> None:
    key = derive_idempotency_key(NOTE_ID, RELEASE_AT)
    assert len(key) == 64
    assert re.fullmatch(r"[a-f0-9]{64}", key)


def test_known_digest() -> None:
    # sha256("507f1f77bcf86cd799439011:2024-01-01T00:00:00.000Z")
    assert derive_idempotency_key(NOTE_ID, RELEASE_AT) == (
        "405792e5b277f6855eb792cdb5d08c8b349cceb494106d14a0baceac45a2e233"
    )


def test_different_note_id_gives_different_key() -> None:
    assert derive_idempotency_key(NOTE_ID, RELEASE_AT) != derive_idempotency_key(
        "507f1f77bcf86cd799439012", RELEASE_AT
    )


def test_different_release_time_gives_different_key() -> None:
    assert derive_idempotency_key(NOTE_ID, RELEASE_AT) != derive_idempotency_key(
        NOTE_ID, "2024-01-01T00:01:00.000Z"
    )


def test_handles_empty_and_special_characters() -> None:
    assert len(derive_idempotency_key("", "")) == 64
    assert re.fullmatch(r"[a-f0-9]{64}", derive_idempotency_key("note-with-special-chars!@#$%", RELEASE_AT))
