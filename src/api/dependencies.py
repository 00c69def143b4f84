"""Shared FastAPI dependencies.

Separated to avoid circular imports between route modules.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends

from calls.runtime import CallRuntime
from calls.store import SessionStore
from pipeline.base import AudioPipelineClient
from pipeline.errors import PipelineUnavailableError
from telephony.actions import CallActions
from telephony.signaling import SignalingLink


@lru_cache(maxsize=1)
def _runtime_factory() -> CallRuntime:
    # Built on first use so the API can be loaded (and tested) without ARI credentials.
    return CallRuntime.from_settings()


def get_runtime() -> CallRuntime:
    return _runtime_factory()


def get_session_store(runtime: CallRuntime = Depends(get_runtime)) -> SessionStore:
    return runtime.store


def get_call_actions(runtime: CallRuntime = Depends(get_runtime)) -> CallActions:
    return runtime.actions


def get_signaling_link(runtime: CallRuntime = Depends(get_runtime)) -> SignalingLink:
    return runtime.link


def get_pipeline(runtime: CallRuntime = Depends(get_runtime)) -> AudioPipelineClient:
    if runtime.pipeline is None:
        raise PipelineUnavailableError()
    return runtime.pipeline
