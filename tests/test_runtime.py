from __future__ import annotations

import asyncio

import pytest

from calls.orchestrator import CallPolicy
from calls.runtime import CallRuntime
from calls.store import SessionStore
from config.settings import Settings
from telephony.actions import CallActions
from telephony.signaling import SignalingLink


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "_env_file": None,
        "asterisk_ari_username": "bridge",
        "asterisk_ari_password": "secret",
        "openai_api_key": None,
        "audio_output_dir": tmp_path / "audio",
        "system_prompt": "Be brief.",
    }
    values.update(overrides)
    return Settings(**values)


def test_missing_ari_credentials_is_a_startup_error(tmp_path):
    with pytest.raises(RuntimeError, match="ASTERISK_ARI_USERNAME"):
        CallRuntime.from_settings(_settings(tmp_path, asterisk_ari_password=None))


def test_pipeline_enabled_requires_openai_key(tmp_path):
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        CallRuntime.from_settings(_settings(tmp_path, pipeline_enabled=True))


def test_prompt_only_runtime_has_no_pipeline(tmp_path):
    runtime = CallRuntime.from_settings(_settings(tmp_path, asterisk_stasis_app="ivr"))

    assert runtime.pipeline is None
    assert runtime.link.app == "ivr"
    assert runtime.running is False


def test_start_and_stop_while_asterisk_is_unreachable():
    async def refuse(url, **kwargs):
        raise OSError("connection refused")

    async def _run():
        link = SignalingLink(
            "http://asterisk:8088/ari", "bridge", "secret", "voice-bridge", reconnect_delay=0.01, ws_connect=refuse
        )
        runtime = CallRuntime(link, CallActions(link), SessionStore(), policy=CallPolicy(prompts=["hello-world"]))
        await runtime.start()
        await asyncio.sleep(0.05)
        started = runtime.running
        await runtime.stop()
        return started, runtime.running, link.connected

    assert asyncio.run(_run()) == (True, False, False)
