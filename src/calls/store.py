"""In-memory registry of call sessions, kept for the lifetime of the process."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from calls.errors import DuplicateSessionError, SessionNotFoundError, SessionTerminatedError


@dataclass
class CallSession:
    """Everything recorded about one call. Lists only ever grow."""

    call_id: str
    caller_name: str
    caller_number: str
    started_at: datetime
    ended_at: datetime | None = None
    recordings: list[str] = field(default_factory=list)
    transcriptions: list[str] = field(default_factory=list)
    responses: list[str] = field(default_factory=list)

    @property
    def active(self) -> bool:
        return self.ended_at is None

    def snapshot(self) -> CallSession:
        return replace(
            self,
            recordings=list(self.recordings),
            transcriptions=list(self.transcriptions),
            responses=list(self.responses),
        )


class SessionStore:
    """Thread-safe session registry keyed by call id.

    Reads return snapshots; the stored records are only changed through the
    append/end methods. Ended sessions stay as history until a new call
    reuses the same id, in which case the old record is replaced.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}
        self._lock = threading.Lock()

    def create(
        self,
        call_id: str,
        caller_name: str,
        caller_number: str,
        *,
        started_at: datetime | None = None,
    ) -> CallSession:
        with self._lock:
            existing = self._sessions.get(call_id)
            if existing is not None and existing.active:
                raise DuplicateSessionError(call_id)
            session = CallSession(
                call_id=call_id,
                caller_name=caller_name,
                caller_number=caller_number,
                started_at=started_at or datetime.now(timezone.utc),
            )
            self._sessions[call_id] = session
            return session.snapshot()

    def get(self, call_id: str) -> CallSession | None:
        with self._lock:
            session = self._sessions.get(call_id)
            return session.snapshot() if session is not None else None

    def append_recording(self, call_id: str, path: str) -> None:
        with self._lock:
            self._writable(call_id).recordings.append(path)

    def append_transcription(self, call_id: str, text: str) -> None:
        with self._lock:
            self._writable(call_id).transcriptions.append(text)

    def append_response(self, call_id: str, text: str) -> None:
        with self._lock:
            self._writable(call_id).responses.append(text)

    def end(self, call_id: str, *, ended_at: datetime | None = None) -> CallSession:
        """Mark the session ended. Ending twice keeps the first timestamp."""

        with self._lock:
            session = self._sessions.get(call_id)
            if session is None:
                raise SessionNotFoundError(call_id)
            if session.ended_at is None:
                session.ended_at = ended_at or datetime.now(timezone.utc)
            return session.snapshot()

    def list_active(self) -> list[CallSession]:
        with self._lock:
            return [s.snapshot() for s in self._sessions.values() if s.active]

    def list_history(self) -> list[CallSession]:
        with self._lock:
            ended = [s.snapshot() for s in self._sessions.values() if not s.active]
        ended.sort(key=lambda s: s.started_at, reverse=True)
        return ended

    def _writable(self, call_id: str) -> CallSession:
        session = self._sessions.get(call_id)
        if session is None:
            raise SessionNotFoundError(call_id)
        if not session.active:
            raise SessionTerminatedError(call_id)
        return session
