"""Capability interface for the speech-to-text / chat / text-to-speech pipeline."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path


class AudioPipelineClient(ABC):
    """Three opaque remote operations used by the call flow."""

    @abstractmethod
    async def transcribe(self, audio_path: Path, *, language: str | None = None) -> str:
        """Return the text spoken in the audio file."""

    @abstractmethod
    async def complete(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Return the assistant reply to a chat-style message list."""

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        *,
        voice: str | None = None,
        output_format: str | None = None,
    ) -> Path:
        """Render ``text`` to an audio file and return its path."""

    async def process_conversation(self, audio_path: Path, *, system_prompt: str) -> Path:
        """Transcribe a single utterance, answer it and speak the answer."""

        text = await self.transcribe(audio_path)
        reply = await self.complete(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ]
        )
        return await self.synthesize(reply)
