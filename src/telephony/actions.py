"""Blocking channel commands on top of the ARI link.

Each command returns only once Asterisk has confirmed it: ``play`` waits for
the PlaybackFinished of its own playback id, ``start_recording`` waits for the
RecordingStarted of its own recording name.
"""

from __future__ import annotations

import asyncio
import enum
import itertools
import logging
import re
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import httpx

from telephony.errors import (
    RecordingFailedError,
    RecordingInProgressError,
    RecordingTimeoutError,
    TelephonyActionError,
)
from telephony.signaling import SignalingLink

LOGGER = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")
_MEDIA_SCHEMES = ("sound:", "recording:", "number:", "digits:", "characters:", "tone:")


class RecordingState(str, enum.Enum):
    PENDING = "pending"
    STARTED = "started"
    FINISHED = "finished"
    FAILED = "failed"


@dataclass
class RecordingHandle:
    call_id: str
    name: str
    format: str
    state: RecordingState = RecordingState.PENDING
    path: Path | None = None

    @property
    def resolved(self) -> bool:
        return self.path is not None


@dataclass
class _PendingRecording:
    handle: RecordingHandle
    started: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())
    finished: asyncio.Future = field(default_factory=lambda: asyncio.get_running_loop().create_future())


def media_ref(media: str) -> str:
    """Qualify a bare sound name as ``sound:<name>``; URIs pass through."""

    if media.startswith(_MEDIA_SCHEMES):
        return media
    return f"sound:{media}"


_name_counter = itertools.count()


def recording_name(call_id: str) -> str:
    """Collision-resistant recording name, safe for the Asterisk spool."""

    stamp = time.time_ns() // 1_000_000
    raw = f"call-{call_id}-{stamp}-{next(_name_counter)}"
    return _UNSAFE_NAME_CHARS.sub("-", raw)


class CallActions:
    """The channel operations the call flow needs: answer, play, record, hang up."""

    def __init__(
        self,
        link: SignalingLink,
        *,
        command_timeout: float = 10.0,
        playback_timeout: float = 120.0,
        recording_ack_timeout: float = 10.0,
        recording_finish_timeout: float = 330.0,
        max_recording_seconds: int = 300,
        max_silence_seconds: int = 3,
        recording_dir: Path | None = None,
        recording_search_dirs: Sequence[Path] = (),
    ) -> None:
        self._link = link
        self._command_timeout = command_timeout
        self._playback_timeout = playback_timeout
        self._recording_ack_timeout = recording_ack_timeout
        self._recording_finish_timeout = recording_finish_timeout
        self._max_recording_seconds = max_recording_seconds
        self._max_silence_seconds = max_silence_seconds
        self._recording_dir = recording_dir
        self._recording_search_dirs = list(recording_search_dirs)

        self._playbacks: dict[str, asyncio.Future] = {}
        self._recordings: dict[str, _PendingRecording] = {}
        self._recording_by_call: dict[str, str] = {}

    async def answer(self, call_id: str) -> None:
        response = await self._command("POST", f"/channels/{call_id}/answer")
        self._expect_success("answer", call_id, response)
        LOGGER.info("Answered call %s", call_id)

    async def play(self, call_id: str, media: str) -> str:
        """Play ``media`` on the channel and return once that playback has finished."""

        playback_id = str(uuid.uuid4())
        done = asyncio.get_running_loop().create_future()
        # Registered before the request: the finish event can beat the HTTP reply.
        self._playbacks[playback_id] = done
        try:
            response = await self._command(
                "POST",
                f"/channels/{call_id}/play",
                params={"media": media_ref(media), "playbackId": playback_id},
            )
            self._expect_success("play", call_id, response)
            LOGGER.info("Playing %s on call %s (playback=%s)", media, call_id, playback_id)
            try:
                await asyncio.wait_for(done, self._playback_timeout)
            except asyncio.TimeoutError as exc:
                raise TelephonyActionError(
                    "play", call_id, detail=f"playback {playback_id} did not finish in time"
                ) from exc
        finally:
            self._playbacks.pop(playback_id, None)

        LOGGER.info("Playback %s finished on call %s", playback_id, call_id)
        return playback_id

    async def start_recording(self, call_id: str, format: str = "wav") -> RecordingHandle:
        """Start recording the channel and wait for Asterisk to confirm it.

        Raises ``RecordingInProgressError`` if the channel is already recording,
        ``RecordingFailedError`` if Asterisk rejects or fails the recording and
        ``RecordingTimeoutError`` if no confirmation arrives in time.
        """

        active = self._recording_by_call.get(call_id)
        if active is not None:
            raise RecordingInProgressError(call_id, active)

        name = recording_name(call_id)
        pending = _PendingRecording(RecordingHandle(call_id=call_id, name=name, format=format))
        self._recording_by_call[call_id] = name
        self._recordings[name] = pending

        try:
            response = await self._command(
                "POST",
                f"/channels/{call_id}/record",
                params={
                    "name": name,
                    "format": format,
                    "maxDurationSeconds": self._max_recording_seconds,
                    "maxSilenceSeconds": self._max_silence_seconds,
                    "ifExists": "overwrite",
                    "beep": "false",
                    "terminateOn": "none",
                },
            )
            if not response.is_success:
                raise RecordingFailedError(name, f"HTTP {response.status_code}: {_detail(response)}")

            LOGGER.info("Recording %s requested on call %s", name, call_id)
            try:
                recording = await asyncio.wait_for(
                    asyncio.shield(pending.started), self._recording_ack_timeout
                )
            except asyncio.TimeoutError as exc:
                raise RecordingTimeoutError(name, self._recording_ack_timeout) from exc
        except BaseException:
            pending.handle.state = RecordingState.FAILED
            self._forget_recording(pending.handle)
            raise

        handle = pending.handle
        handle.state = RecordingState.STARTED
        handle.path = self._resolve_path(handle, recording, probe=False)
        LOGGER.info(
            "Recording %s started on call %s (path=%s)",
            name,
            call_id,
            handle.path or "unresolved",
        )
        return handle

    async def finish_recording(self, handle: RecordingHandle) -> RecordingHandle:
        """Wait until the recording has stopped and its file is final.

        Asterisk ends the recording on silence or max duration; if neither
        happens in time the recording is stopped explicitly.
        """

        pending = self._recordings.get(handle.name)
        if pending is None:
            return handle

        try:
            try:
                recording = await asyncio.wait_for(
                    asyncio.shield(pending.finished), self._recording_finish_timeout
                )
            except asyncio.TimeoutError:
                LOGGER.warning("Recording %s still running; stopping it", handle.name)
                await self.stop_recording(handle)
                recording = await asyncio.wait_for(
                    asyncio.shield(pending.finished), self._command_timeout
                )
        except asyncio.TimeoutError as exc:
            handle.state = RecordingState.FAILED
            raise RecordingTimeoutError(handle.name, self._recording_finish_timeout) from exc
        except RecordingFailedError:
            handle.state = RecordingState.FAILED
            raise
        finally:
            self._forget_recording(handle)

        handle.state = RecordingState.FINISHED
        handle.path = self._resolve_path(handle, recording, probe=True)
        LOGGER.info("Recording %s finished (path=%s)", handle.name, handle.path or "unresolved")
        return handle

    async def stop_recording(self, handle: RecordingHandle) -> None:
        response = await self._command("POST", f"/recordings/live/{handle.name}/stop")
        if response.status_code == 404:
            LOGGER.info("Recording %s already stopped", handle.name)
            return
        self._expect_success("stop_recording", handle.call_id, response)

    async def hangup(self, call_id: str) -> bool:
        """Hang up the channel. Returns False if it was already gone."""

        response = await self._command(
            "DELETE", f"/channels/{call_id}", params={"reason": "normal"}
        )
        if response.status_code == 404:
            LOGGER.info("Call %s already hung up", call_id)
            return False
        self._expect_success("hangup", call_id, response)
        LOGGER.info("Hung up call %s", call_id)
        return True

    def release(self, call_id: str) -> None:
        """Drop recording bookkeeping for a call whose channel is gone."""

        name = self._recording_by_call.pop(call_id, None)
        if name is None:
            return
        pending = self._recordings.pop(name, None)
        if pending is not None:
            for future in (pending.started, pending.finished):
                if not future.done():
                    future.cancel()

    def is_recording(self, call_id: str) -> bool:
        return call_id in self._recording_by_call

    async def handle_notification(self, event: dict[str, Any]) -> None:
        """Resolve waiters from PlaybackFinished and Recording* events."""

        event_type = event.get("type")
        if event_type == "PlaybackFinished":
            playback = event.get("playback") or {}
            future = self._playbacks.get(str(playback.get("id") or ""))
            if future is None or future.done():
                return
            if playback.get("state") == "failed":
                future.set_exception(
                    TelephonyActionError(
                        "play",
                        _channel_from_target(playback.get("target_uri")),
                        detail=f"playback of {playback.get('media_uri')} failed",
                    )
                )
            else:
                future.set_result(playback)
            return

        if event_type not in {"RecordingStarted", "RecordingFinished", "RecordingFailed"}:
            return

        recording = event.get("recording") or {}
        pending = self._recordings.get(str(recording.get("name") or ""))
        if pending is None:
            return

        if event_type == "RecordingStarted":
            _settle(pending.started, result=recording)
        elif event_type == "RecordingFinished":
            _settle(pending.started, result=recording)
            _settle(pending.finished, result=recording)
        else:
            error = RecordingFailedError(pending.handle.name, recording.get("cause"))
            _settle(pending.started, error=error)
            _settle(pending.finished, error=error)

    async def _command(
        self, method: str, path: str, *, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        return await self._link.request(
            method, path, params=params, timeout=self._command_timeout
        )

    @staticmethod
    def _expect_success(action: str, call_id: str, response: httpx.Response) -> None:
        if not response.is_success:
            raise TelephonyActionError(
                action, call_id, status_code=response.status_code, detail=_detail(response)
            )

    def _forget_recording(self, handle: RecordingHandle) -> None:
        pending = self._recordings.pop(handle.name, None)
        if self._recording_by_call.get(handle.call_id) == handle.name:
            del self._recording_by_call[handle.call_id]
        if pending is not None:
            for future in (pending.started, pending.finished):
                if future.done() and not future.cancelled():
                    future.exception()  # mark retrieved
                elif not future.done():
                    future.cancel()

    def _resolve_path(
        self, handle: RecordingHandle, recording: dict[str, Any], *, probe: bool
    ) -> Path | None:
        reported = recording.get("path") or recording.get("target_path")
        if isinstance(reported, str) and reported:
            return Path(reported)

        filename = f"{handle.name}.{handle.format}"
        if self._recording_dir is not None:
            return self._recording_dir / filename
        if handle.path is not None:
            return handle.path

        if probe:
            for directory in self._recording_search_dirs:
                candidate = directory / filename
                if candidate.is_file():
                    LOGGER.debug("Found recording %s by probing %s", handle.name, directory)
                    return candidate
        return None


def _settle(future: asyncio.Future, *, result: Any = None, error: BaseException | None = None) -> None:
    if future.done():
        return
    if error is not None:
        future.set_exception(error)
    else:
        future.set_result(result)


def _detail(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "message" in payload:
        return str(payload["message"])
    return response.text


def _channel_from_target(target_uri: Any) -> str:
    target = str(target_uri or "")
    return target.split(":", 1)[1] if target.startswith("channel:") else target
