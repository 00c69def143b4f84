"""API-facing Pydantic models."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class CallSessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    call_id: str
    caller_name: str
    caller_number: str
    started_at: datetime
    ended_at: datetime | None = None
    recordings: list[str]
    transcriptions: list[str]
    responses: list[str]


class ActiveCallsResponse(BaseModel):
    active_calls: list[CallSessionResponse]
    count: int


class CallHistoryResponse(BaseModel):
    call_history: list[CallSessionResponse]
    count: int


class CallDetailResponse(BaseModel):
    call: CallSessionResponse | None = None
    error: str | None = None


class LinkStatusResponse(BaseModel):
    connected: bool
    application: str
    timestamp: datetime


class PlayRequest(BaseModel):
    media: str = Field(min_length=1, description="Sound name or ARI media URI, e.g. sound:hello-world.")


class ChannelActionResponse(BaseModel):
    success: bool
    message: str


class TranscriptionRequest(BaseModel):
    audio_file_path: str
    language: str | None = None


class TranscriptionResponse(BaseModel):
    text: str
    language: str | None = None


class SpeechRequest(BaseModel):
    text: str = Field(min_length=1)
    voice: str | None = None
    output_format: str | None = None


class SpeechResponse(BaseModel):
    audio_file_path: str


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    messages: list[ChatMessage] = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)


class ChatResponse(BaseModel):
    role: str = "assistant"
    content: str


class ProcessConversationRequest(BaseModel):
    audio_file_path: str


class ProcessConversationResponse(BaseModel):
    response_audio_path: str


class PipelineStatusResponse(BaseModel):
    status: str
    timestamp: datetime
