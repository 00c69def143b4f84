from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class FakeAriLink:
    """Stands in for SignalingLink: records commands and emits the events Asterisk would."""

    def __init__(
        self,
        *,
        finish_playbacks: bool = True,
        recording_events: tuple[str, ...] = ("RecordingStarted", "RecordingFinished"),
        statuses: dict[str, list[int]] | None = None,
    ) -> None:
        self.finish_playbacks = finish_playbacks
        self.recording_events = recording_events
        self.statuses = {key: list(value) for key, value in (statuses or {}).items()}
        self.requests: list[tuple[str, str, dict]] = []
        self.handler = None
        self._emitted: list[asyncio.Task] = []

    def attach(self, actions) -> None:
        self.handler = actions.handle_notification

    def actions_called(self, action: str) -> list[tuple[str, str, dict]]:
        return [req for req in self.requests if _action_for(req[0], req[1]) == action]

    async def request(self, method: str, path: str, *, params=None, timeout=None) -> httpx.Response:
        params = dict(params or {})
        self.requests.append((method, path, params))
        action = _action_for(method, path)

        queued = self.statuses.get(action)
        status = queued.pop(0) if queued else 200
        if status >= 400:
            return httpx.Response(status, json={"message": "Channel not found"})

        if action == "play":
            playback = {"id": params["playbackId"], "media_uri": params["media"], "state": "queued"}
            if self.finish_playbacks:
                self.emit({"type": "PlaybackFinished", "playback": {**playback, "state": "done"}})
            return httpx.Response(status, json=playback)

        if action == "record":
            recording = {"name": params["name"], "format": params["format"], "state": "queued"}
            for event_type in self.recording_events:
                self.emit({"type": event_type, "recording": dict(recording)})
            return httpx.Response(status, json=recording)

        return httpx.Response(204 if status == 200 else status)

    def emit(self, event: dict) -> None:
        # Delivered on the next loop iteration, after the HTTP reply, like a real event stream.
        loop = asyncio.get_running_loop()
        loop.call_soon(lambda: self._emitted.append(asyncio.ensure_future(self.handler(event))))


def _action_for(method: str, path: str) -> str:
    if method == "DELETE":
        return "hangup"
    return path.rstrip("/").rsplit("/", 1)[-1]


@pytest.fixture()
def fake_ari_link():
    return FakeAriLink


class FakeCallActions:
    def __init__(self) -> None:
        self.played: list[tuple[str, str]] = []
        self.hung_up: list[str] = []

    async def play(self, call_id: str, media: str) -> str:
        self.played.append((call_id, media))
        return "playback-1"

    async def hangup(self, call_id: str) -> bool:
        first = call_id not in self.hung_up
        self.hung_up.append(call_id)
        return first


class FakePipeline:
    async def transcribe(self, audio_path, *, language=None) -> str:
        return "What are your opening hours?"

    async def complete(self, messages, *, temperature=None, max_tokens=None) -> str:
        return "We are open from nine to five."

    async def synthesize(self, text, *, voice=None, output_format=None) -> Path:
        return Path("/tmp/tts-1.wav")

    async def process_conversation(self, audio_path, *, system_prompt: str) -> Path:
        return Path("/tmp/tts-2.wav")


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("runtime")

    # Must be set before importing modules that read settings.
    os.environ["AUDIO_OUTPUT_DIR"] = str(tmp_dir / "audio")
    os.environ["ARI_AUTOSTART"] = "false"

    import importlib

    for module_name in [
        "config.settings",
        "api.dependencies",
        "api.ari_routes",
        "api.pipeline_routes",
        "api.routes",
        "calls.runtime",
        "main",
    ]:
        sys.modules.pop(module_name, None)

    main = importlib.import_module("main")
    return main.app


@pytest.fixture()
def session_store():
    from calls.store import SessionStore

    return SessionStore()


@pytest.fixture()
def call_actions():
    return FakeCallActions()


@pytest.fixture()
def client(app, session_store, call_actions):
    # Never touch a real Asterisk or OpenAI from the API tests.
    import api.dependencies as deps

    link = SimpleNamespace(connected=True, app="voice-bridge")
    app.dependency_overrides[deps.get_session_store] = lambda: session_store
    app.dependency_overrides[deps.get_call_actions] = lambda: call_actions
    app.dependency_overrides[deps.get_signaling_link] = lambda: link
    app.dependency_overrides[deps.get_pipeline] = lambda: FakePipeline()

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
