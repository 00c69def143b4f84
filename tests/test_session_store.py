from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from calls.errors import DuplicateSessionError, SessionNotFoundError, SessionTerminatedError
from calls.store import SessionStore


def test_create_and_get_returns_independent_snapshot():
    store = SessionStore()
    created = store.create("C1", "Alice", "555-0100")

    assert created.call_id == "C1"
    assert created.caller_number == "555-0100"
    assert created.ended_at is None

    created.recordings.append("/tmp/not-stored.wav")
    assert store.get("C1").recordings == []


def test_get_unknown_call_returns_none():
    assert SessionStore().get("missing") is None


def test_create_rejects_duplicate_active_session():
    store = SessionStore()
    store.create("C1", "Alice", "555-0100")

    with pytest.raises(DuplicateSessionError):
        store.create("C1", "Alice", "555-0100")


def test_create_replaces_ended_session_instead_of_merging():
    store = SessionStore()
    first_start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    store.create("C1", "Alice", "555-0100", started_at=first_start)
    store.append_transcription("C1", "hello")
    store.end("C1")

    fresh = store.create("C1", "Bob", "555-0199")

    assert fresh.caller_name == "Bob"
    assert fresh.transcriptions == []
    assert fresh.started_at != first_start
    assert store.list_history() == []
    assert [s.call_id for s in store.list_active()] == ["C1"]


def test_appends_are_ordered():
    store = SessionStore()
    store.create("C1", "", "")
    store.append_recording("C1", "/rec/a.wav")
    store.append_transcription("C1", "first")
    store.append_transcription("C1", "second")
    store.append_response("C1", "reply")

    session = store.get("C1")
    assert session.recordings == ["/rec/a.wav"]
    assert session.transcriptions == ["first", "second"]
    assert session.responses == ["reply"]


def test_append_to_unknown_call_raises_not_found():
    store = SessionStore()
    with pytest.raises(SessionNotFoundError):
        store.append_recording("nope", "/rec/a.wav")
    with pytest.raises(SessionNotFoundError):
        store.end("nope")


@pytest.mark.parametrize("method", ["append_recording", "append_transcription", "append_response"])
def test_append_after_end_is_rejected(method):
    store = SessionStore()
    store.create("C1", "", "")
    store.end("C1")

    with pytest.raises(SessionTerminatedError):
        getattr(store, method)("C1", "late")

    session = store.get("C1")
    assert session.recordings == session.transcriptions == session.responses == []


def test_end_is_idempotent_and_keeps_first_timestamp():
    store = SessionStore()
    store.create("C1", "", "")
    first = store.end("C1").ended_at
    second = store.end("C1", ended_at=first + timedelta(minutes=5)).ended_at

    assert first is not None
    assert second == first


def test_history_is_most_recent_first_and_excludes_active():
    store = SessionStore()
    base = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    for offset, call_id in [(0, "old"), (2, "newest"), (1, "middle"), (3, "live")]:
        store.create(call_id, "", "", started_at=base + timedelta(minutes=offset))
    for call_id in ["old", "newest", "middle"]:
        store.end(call_id)

    assert [s.call_id for s in store.list_history()] == ["newest", "middle", "old"]
    assert [s.call_id for s in store.list_active()] == ["live"]


def test_concurrent_creates_and_appends_from_threads():
    store = SessionStore()

    def worker(index: int) -> None:
        call_id = f"call-{index}"
        store.create(call_id, "", str(index))
        for n in range(20):
            store.append_transcription(call_id, f"t{n}")
        store.list_active()
        store.end(call_id)

    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(worker, range(50)))

    history = store.list_history()
    assert len(history) == 50
    assert all(len(s.transcriptions) == 20 for s in history)
