"""Failures of the external audio pipeline.

These exceptions are safe to import from API layers without pulling in the OpenAI SDK.
"""

from __future__ import annotations


class PipelineError(Exception):
    status_code: int = 502
    default_detail: str = "Audio pipeline error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class PipelineUnavailableError(PipelineError):
    status_code = 503
    default_detail = "Audio pipeline is not configured."


class TranscriptionFailedError(PipelineError):
    default_detail = "Transcription failed."


class CompletionFailedError(PipelineError):
    default_detail = "Text generation failed."


class SynthesisFailedError(PipelineError):
    default_detail = "Speech synthesis failed."


class AudioFileNotFoundError(PipelineError):
    status_code = 404
    default_detail = "Audio file not found."
