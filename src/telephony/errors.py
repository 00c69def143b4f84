"""Exceptions raised by the ARI link and the telephony actions built on it."""

from __future__ import annotations


class TelephonyError(Exception):
    default_detail: str = "Telephony error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class SignalingConnectionError(TelephonyError, ConnectionError):
    """The ARI link is down or could not be established.

    The link retries on its own; callers only see commands fail while it is down.
    """

    default_detail = "ARI link unavailable"


class TelephonyActionError(TelephonyError):
    """ARI rejected a channel command."""

    default_detail = "Channel command rejected"

    def __init__(
        self,
        action: str,
        call_id: str,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        message = f"{action} failed for channel {call_id}"
        if status_code is not None:
            message += f" (HTTP {status_code})"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.action = action
        self.call_id = call_id
        self.status_code = status_code


class RecordingError(TelephonyError):
    """Base class for recording failures; the call carries on without a recording."""

    default_detail = "Recording error"


class RecordingFailedError(RecordingError):
    default_detail = "Recording failed"

    def __init__(self, name: str, cause: str | None = None) -> None:
        super().__init__(f"Recording {name} failed: {cause or 'unknown cause'}")
        self.name = name
        self.cause = cause


class RecordingTimeoutError(RecordingError):
    default_detail = "Recording was not acknowledged in time"

    def __init__(self, name: str, timeout: float) -> None:
        super().__init__(f"Recording {name} not confirmed within {timeout:g}s")
        self.name = name
        self.timeout = timeout


class RecordingInProgressError(RecordingError):
    default_detail = "A recording is already running on this channel"

    def __init__(self, call_id: str, name: str) -> None:
        super().__init__(f"Channel {call_id} is already recording {name}")
        self.call_id = call_id
        self.name = name
