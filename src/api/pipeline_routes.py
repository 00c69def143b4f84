"""Direct access to the audio pipeline steps."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends

from api.dependencies import get_pipeline
from api.schemas import (
    ChatRequest,
    ChatResponse,
    PipelineStatusResponse,
    ProcessConversationRequest,
    ProcessConversationResponse,
    SpeechRequest,
    SpeechResponse,
    TranscriptionRequest,
    TranscriptionResponse,
)
from config.settings import get_settings
from pipeline.base import AudioPipelineClient

router = APIRouter(prefix="/pipeline", tags=["pipeline"])


@router.get("", response_model=PipelineStatusResponse)
async def pipeline_status(
    pipeline: AudioPipelineClient = Depends(get_pipeline),
) -> PipelineStatusResponse:
    return PipelineStatusResponse(status="active", timestamp=datetime.now(timezone.utc))


@router.post("/transcribe", response_model=TranscriptionResponse)
async def transcribe(
    body: TranscriptionRequest,
    pipeline: AudioPipelineClient = Depends(get_pipeline),
) -> TranscriptionResponse:
    text = await pipeline.transcribe(Path(body.audio_file_path), language=body.language)
    return TranscriptionResponse(text=text, language=body.language)


@router.post("/speech", response_model=SpeechResponse)
async def synthesize(
    body: SpeechRequest,
    pipeline: AudioPipelineClient = Depends(get_pipeline),
) -> SpeechResponse:
    path = await pipeline.synthesize(body.text, voice=body.voice, output_format=body.output_format)
    return SpeechResponse(audio_file_path=str(path))


@router.post("/chat", response_model=ChatResponse)
async def chat(
    body: ChatRequest,
    pipeline: AudioPipelineClient = Depends(get_pipeline),
) -> ChatResponse:
    content = await pipeline.complete(
        [message.model_dump() for message in body.messages],
        temperature=body.temperature,
        max_tokens=body.max_tokens,
    )
    return ChatResponse(content=content)


@router.post("/process-conversation", response_model=ProcessConversationResponse)
async def process_conversation(
    body: ProcessConversationRequest,
    pipeline: AudioPipelineClient = Depends(get_pipeline),
) -> ProcessConversationResponse:
    path = await pipeline.process_conversation(
        Path(body.audio_file_path), system_prompt=get_settings().system_prompt
    )
    return ProcessConversationResponse(response_audio_path=str(path))
