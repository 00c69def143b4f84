"""Assembles the ARI link, dispatcher, actions, store and orchestrator into one runtime."""

from __future__ import annotations

import asyncio
import logging

from calls.orchestrator import CallOrchestrator, CallPolicy
from calls.store import SessionStore
from config.settings import Settings, get_settings
from pipeline.base import AudioPipelineClient
from telephony.actions import CallActions
from telephony.events import EventBus, EventDispatcher
from telephony.signaling import SignalingLink

LOGGER = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    for noisy in ("httpx", "openai", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


class CallRuntime:
    def __init__(
        self,
        link: SignalingLink,
        actions: CallActions,
        store: SessionStore,
        *,
        policy: CallPolicy,
        pipeline: AudioPipelineClient | None = None,
    ) -> None:
        self.link = link
        self.actions = actions
        self.store = store
        self.pipeline = pipeline
        self.bus = EventBus()
        self.dispatcher = EventDispatcher(self.bus, media_handler=actions.handle_notification)
        self.orchestrator = CallOrchestrator(
            self.bus, actions, store, policy=policy, pipeline=pipeline
        )
        self._tasks: list[asyncio.Task] = []

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CallRuntime:
        settings = settings or get_settings()
        if not settings.asterisk_ari_username or not settings.asterisk_ari_password:
            raise RuntimeError("ASTERISK_ARI_USERNAME/PASSWORD not configured")

        link = SignalingLink(
            settings.asterisk_ari_url,
            settings.asterisk_ari_username,
            settings.asterisk_ari_password,
            settings.asterisk_stasis_app,
            reconnect_delay=settings.ari_reconnect_delay_seconds,
            max_reconnect_delay=settings.ari_max_reconnect_delay_seconds,
            command_timeout=settings.ari_command_timeout_seconds,
        )
        actions = CallActions(
            link,
            command_timeout=settings.ari_command_timeout_seconds,
            playback_timeout=settings.playback_timeout_seconds,
            recording_ack_timeout=settings.recording_ack_timeout_seconds,
            recording_finish_timeout=settings.recording_finish_timeout_seconds,
            max_recording_seconds=settings.recording_max_duration_seconds,
            max_silence_seconds=settings.recording_max_silence_seconds,
            recording_dir=settings.recording_dir,
            recording_search_dirs=settings.recording_search_dirs,
        )

        pipeline = None
        if settings.openai_api_key:
            # Imported lazily so a prompt-only deployment does not need OpenAI credentials.
            from pipeline.openai_client import OpenAIPipelineClient

            pipeline = OpenAIPipelineClient(settings)
        elif settings.pipeline_enabled:
            raise RuntimeError("PIPELINE_ENABLED requires OPENAI_API_KEY")

        return cls(
            link,
            actions,
            SessionStore(),
            policy=CallPolicy.from_settings(settings),
            pipeline=pipeline,
        )

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    async def start(self) -> None:
        if self.running:
            return
        self.link.on_notification(self.dispatcher.dispatch)
        self._tasks = [
            asyncio.create_task(self.orchestrator.run(), name="call-orchestrator"),
            asyncio.create_task(self.link.run_forever(), name="ari-link"),
        ]
        LOGGER.info("Call runtime started for app %s", self.link.app)

    async def wait(self) -> None:
        await asyncio.gather(*self._tasks)

    async def stop(self) -> None:
        await self.orchestrator.shutdown()
        await self.link.disconnect()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        LOGGER.info("Call runtime stopped")


async def _amain() -> None:
    runtime = CallRuntime.from_settings()
    await runtime.start()
    try:
        await runtime.wait()
    finally:
        await runtime.stop()


def main() -> None:
    configure_logging(get_settings().log_level)
    try:
        asyncio.run(_amain())
    except KeyboardInterrupt:
        LOGGER.info("Interrupted")


if __name__ == "__main__":
    main()
