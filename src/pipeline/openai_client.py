"""OpenAI-backed audio pipeline: Whisper, chat completions and TTS."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Iterable
from pathlib import Path

from openai import AsyncOpenAI, OpenAIError

from config.settings import Settings, get_settings
from pipeline.base import AudioPipelineClient
from pipeline.errors import (
    AudioFileNotFoundError,
    CompletionFailedError,
    SynthesisFailedError,
    TranscriptionFailedError,
)

LOGGER = logging.getLogger(__name__)


class OpenAIPipelineClient(AudioPipelineClient):
    """Wrapper for the OpenAI audio and chat completion APIs."""

    def __init__(self, settings: Settings | None = None, *, client: AsyncOpenAI | None = None) -> None:
        settings = settings or get_settings()
        if client is None:
            if not settings.openai_api_key:
                raise ValueError("OPENAI_API_KEY must be configured for the audio pipeline.")
            client = AsyncOpenAI(
                api_key=settings.openai_api_key,
                base_url=settings.openai_base_url or None,
            )

        self._client = client
        self._transcription_model = settings.transcription_model
        self._default_language = settings.transcription_language
        self._completion_model = settings.completion_model
        self._temperature = settings.completion_temperature
        self._max_tokens = settings.completion_max_tokens
        self._tts_model = settings.tts_model
        self._voice = settings.tts_voice
        self._tts_format = settings.tts_format
        self._output_dir = settings.audio_output_dir

    async def transcribe(self, audio_path: Path, *, language: str | None = None) -> str:
        audio_path = Path(audio_path)
        if not audio_path.is_file():
            raise AudioFileNotFoundError(f"Audio file not found: {audio_path}")

        LOGGER.info("Transcribing %s", audio_path)
        kwargs = {}
        if language or self._default_language:
            kwargs["language"] = language or self._default_language
        try:
            response = await self._client.audio.transcriptions.create(
                file=audio_path,
                model=self._transcription_model,
                **kwargs,
            )
        except OpenAIError as exc:
            LOGGER.error("Transcription failed: %s", exc)
            raise TranscriptionFailedError(str(exc)) from exc

        return response.text.strip()

    async def complete(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        LOGGER.info("Generating reply with %s", self._completion_model)
        try:
            response = await self._client.chat.completions.create(
                model=self._completion_model,
                messages=list(messages),
                temperature=self._temperature if temperature is None else temperature,
                max_tokens=max_tokens or self._max_tokens,
            )
        except OpenAIError as exc:
            LOGGER.error("Chat completion failed: %s", exc)
            raise CompletionFailedError(str(exc)) from exc

        content = (response.choices[0].message.content or "").strip()
        if not content:
            raise CompletionFailedError("Model returned an empty reply.")
        return content

    async def synthesize(
        self,
        text: str,
        *,
        voice: str | None = None,
        output_format: str | None = None,
    ) -> Path:
        output_format = output_format or self._tts_format
        LOGGER.info("Synthesizing speech: %r", text[:30])
        try:
            response = await self._client.audio.speech.create(
                model=self._tts_model,
                voice=voice or self._voice,
                input=text,
                response_format=output_format,
            )
        except OpenAIError as exc:
            LOGGER.error("Text-to-speech failed: %s", exc)
            raise SynthesisFailedError(str(exc)) from exc

        stamp = time.time_ns() // 1_000_000
        output_path = self._output_dir / f"tts-{stamp}-{uuid.uuid4().hex[:8]}.{output_format}"
        await asyncio.to_thread(output_path.write_bytes, response.content)
        LOGGER.info("Generated audio file %s", output_path)
        return output_path
