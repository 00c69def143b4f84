"""Session store misuse. These indicate a bug in the caller, not a call failure."""

from __future__ import annotations


class SessionError(Exception):
    def __init__(self, call_id: str, message: str) -> None:
        super().__init__(message)
        self.call_id = call_id


class SessionNotFoundError(SessionError):
    def __init__(self, call_id: str) -> None:
        super().__init__(call_id, f"No session for call {call_id}")


class DuplicateSessionError(SessionError):
    def __init__(self, call_id: str) -> None:
        super().__init__(call_id, f"Call {call_id} already has an active session")


class SessionTerminatedError(SessionError):
    def __init__(self, call_id: str) -> None:
        super().__init__(call_id, f"Session for call {call_id} has ended and is read-only")
