"""Per-call control flow driven by lifecycle events."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol, TypeVar

from calls.errors import DuplicateSessionError, SessionError, SessionNotFoundError
from calls.history import build_llm_history
from calls.store import SessionStore
from config.settings import Settings
from pipeline.base import AudioPipelineClient
from pipeline.errors import PipelineError, PipelineUnavailableError
from telephony.actions import RecordingHandle
from telephony.errors import RecordingError, TelephonyError
from telephony.events import CallEnded, CallLifecycleEvent, CallStarted, EventBus

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CallState(str, enum.Enum):
    IDLE = "idle"
    ANSWERING = "answering"
    PLAYING = "playing"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    GENERATING = "generating"
    SYNTHESIZING = "synthesizing"
    PLAYING_RESPONSE = "playing_response"
    HANGING_UP = "hanging_up"
    ENDED = "ended"


class ChannelActions(Protocol):
    async def answer(self, call_id: str) -> None: ...

    async def play(self, call_id: str, media: str) -> str: ...

    async def start_recording(self, call_id: str, format: str = "wav") -> RecordingHandle: ...

    async def finish_recording(self, handle: RecordingHandle) -> RecordingHandle: ...

    async def hangup(self, call_id: str) -> bool: ...

    def release(self, call_id: str) -> None: ...


@dataclass
class CallPolicy:
    """What happens on every answered call."""

    prompts: list[str] = field(default_factory=list)
    recording_enabled: bool = False
    pipeline_enabled: bool = False
    recording_format: str = "wav"
    system_prompt: str = ""
    transcription_language: str | None = None
    voice: str | None = None
    tts_format: str | None = None
    pipeline_timeout: float = 60.0
    audio_public_base_url: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> CallPolicy:
        return cls(
            prompts=list(settings.call_prompts),
            recording_enabled=settings.recording_enabled,
            pipeline_enabled=settings.pipeline_enabled,
            recording_format=settings.recording_format,
            system_prompt=settings.system_prompt,
            transcription_language=settings.transcription_language,
            voice=settings.tts_voice,
            tts_format=settings.tts_format,
            pipeline_timeout=settings.pipeline_timeout_seconds,
            audio_public_base_url=settings.audio_public_base_url,
        )


class CallOrchestrator:
    """Runs one worker task per call.

    A worker answers, plays the configured prompts in order, optionally records
    the caller and answers through the audio pipeline, and always finishes by
    hanging up. Any failed step skips straight to the hangup. A CallEnded
    event cancels the worker wherever it is; the session is closed and the
    call id is not acted on again until a new CallStarted arrives.
    """

    def __init__(
        self,
        bus: EventBus,
        actions: ChannelActions,
        store: SessionStore,
        *,
        policy: CallPolicy,
        pipeline: AudioPipelineClient | None = None,
    ) -> None:
        if policy.pipeline_enabled and pipeline is None:
            raise ValueError("pipeline_enabled requires an audio pipeline client")
        self._actions = actions
        self._store = store
        self._policy = policy
        self._pipeline = pipeline
        self._subscription = bus.subscribe()
        self._workers: dict[str, asyncio.Task] = {}
        self._states: dict[str, CallState] = {}

    @property
    def store(self) -> SessionStore:
        return self._store

    def state_of(self, call_id: str) -> CallState | None:
        state = self._states.get(call_id)
        if state is None:
            # Finished calls keep no in-memory state; the store remembers them.
            session = self._store.get(call_id)
            if session is not None and not session.active:
                return CallState.ENDED
        return state

    async def run(self) -> None:
        """Consume lifecycle events until cancelled."""

        try:
            async for event in self._subscription:
                await self.handle_event(event)
        finally:
            self._subscription.close()

    async def handle_event(self, event: CallLifecycleEvent) -> None:
        if isinstance(event, CallStarted):
            self._on_call_started(event)
        elif isinstance(event, CallEnded):
            self._on_call_ended(event)

    async def wait_for_call(self, call_id: str) -> None:
        task = self._workers.get(call_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._workers.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _on_call_started(self, event: CallStarted) -> None:
        call_id = event.call_id
        session = self._store.get(call_id)
        if session is not None and session.active:
            LOGGER.warning("Call %s already has an active session; ignoring duplicate start", call_id)
            return

        # A worker cancelled by CallEnded may still be unwinding; it is superseded here.
        try:
            self._store.create(call_id, event.caller.name, event.caller.number)
        except DuplicateSessionError:
            LOGGER.warning("Call %s already has an active session; ignoring duplicate start", call_id)
            return

        self._states[call_id] = CallState.IDLE
        task = asyncio.create_task(self._run_call(call_id), name=f"call-{call_id}")
        self._workers[call_id] = task
        task.add_done_callback(lambda done, cid=call_id: self._forget_worker(cid, done))

    def _on_call_ended(self, event: CallEnded) -> None:
        call_id = event.call_id
        session = self._store.get(call_id)
        if session is None or not session.active:
            LOGGER.debug("Ignoring end of call %s: no active session", call_id)
            return

        LOGGER.info("Call %s ended by the remote side during %s", call_id, self._state_name(call_id))
        self._store.end(call_id)
        self._set_state(call_id, CallState.ENDED)
        worker = self._workers.get(call_id)
        if worker is not None and not worker.done():
            worker.cancel()
        else:
            self._states.pop(call_id, None)
        self._actions.release(call_id)

    def _forget_worker(self, call_id: str, task: asyncio.Task) -> None:
        if self._workers.get(call_id) is task:
            del self._workers[call_id]
            self._states.pop(call_id, None)

    def _owns(self, call_id: str) -> bool:
        return self._workers.get(call_id) is asyncio.current_task()

    async def _run_call(self, call_id: str) -> None:
        try:
            await self._converse(call_id)
        except asyncio.CancelledError:
            LOGGER.info("Call %s: flow abandoned", call_id)
            raise
        except (TelephonyError, PipelineError, SessionError, asyncio.TimeoutError) as exc:
            LOGGER.warning(
                "Call %s: %s failed (%s); hanging up",
                call_id,
                self._state_name(call_id),
                str(exc) or type(exc).__name__,
            )
        except Exception:
            LOGGER.exception("Call %s: unexpected failure during %s", call_id, self._state_name(call_id))

        if self._owns(call_id):
            await self._hang_up(call_id)

    async def _converse(self, call_id: str) -> None:
        self._set_state(call_id, CallState.ANSWERING)
        await self._actions.answer(call_id)

        total = len(self._policy.prompts)
        for index, prompt in enumerate(self._policy.prompts, start=1):
            self._set_state(call_id, CallState.PLAYING, f"prompt {index}/{total}")
            await self._actions.play(call_id, prompt)

        if not self._policy.recording_enabled:
            return

        recording = await self._record(call_id)
        if recording is None or not self._policy.pipeline_enabled:
            return

        await self._respond(call_id, recording)

    async def _record(self, call_id: str) -> Path | None:
        self._set_state(call_id, CallState.RECORDING)
        try:
            handle = await self._actions.start_recording(call_id, self._policy.recording_format)
            handle = await self._actions.finish_recording(handle)
        except RecordingError as exc:
            LOGGER.warning("Call %s: continuing without recording: %s", call_id, exc)
            return None

        if handle.path is None:
            LOGGER.warning(
                "Call %s: location of recording %s is unknown; set RECORDING_DIR",
                call_id,
                handle.name,
            )
            return None

        self._store.append_recording(call_id, str(handle.path))
        return handle.path

    async def _respond(self, call_id: str, recording: Path) -> None:
        if self._pipeline is None:
            raise PipelineUnavailableError()

        self._set_state(call_id, CallState.TRANSCRIBING)
        text = await self._pipeline_step(
            self._pipeline.transcribe(recording, language=self._policy.transcription_language)
        )
        self._store.append_transcription(call_id, text)

        self._set_state(call_id, CallState.GENERATING)
        session = self._store.get(call_id)
        if session is None:
            raise SessionNotFoundError(call_id)
        reply = await self._pipeline_step(
            self._pipeline.complete(build_llm_history(self._policy.system_prompt, session))
        )
        self._store.append_response(call_id, reply)

        self._set_state(call_id, CallState.SYNTHESIZING)
        audio_path = await self._pipeline_step(
            self._pipeline.synthesize(
                reply, voice=self._policy.voice, output_format=self._policy.tts_format
            )
        )

        self._set_state(call_id, CallState.PLAYING_RESPONSE)
        await self._actions.play(call_id, self._media_for(audio_path))

    async def _pipeline_step(self, step: Awaitable[T]) -> T:
        return await asyncio.wait_for(step, self._policy.pipeline_timeout)

    async def _hang_up(self, call_id: str) -> None:
        self._set_state(call_id, CallState.HANGING_UP)
        try:
            await self._actions.hangup(call_id)
        except TelephonyError as exc:
            LOGGER.warning("Call %s: hangup failed: %s", call_id, exc)
        finally:
            # A worker superseded by a new CallStarted must not touch the new session.
            if self._owns(call_id):
                self._actions.release(call_id)
                self._store.end(call_id)
                self._set_state(call_id, CallState.ENDED)

    def _media_for(self, audio_path: Path) -> str:
        if self._policy.audio_public_base_url:
            return f"sound:{self._policy.audio_public_base_url.rstrip('/')}/{audio_path.name}"
        # Asterisk picks the format itself when the extension is left off.
        return f"sound:{audio_path.with_suffix('')}"

    def _set_state(self, call_id: str, state: CallState, detail: str = "") -> None:
        self._states[call_id] = state
        LOGGER.info("Call %s -> %s%s", call_id, state.value, f" ({detail})" if detail else "")

    def _state_name(self, call_id: str) -> str:
        state = self._states.get(call_id)
        return state.value if state is not None else "unknown"
