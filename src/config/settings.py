"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from prompts.loader import load_prompt


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Asterisk ARI link
    asterisk_ari_url: str = Field(
        default="http://asterisk:8088/ari",
        description="Base URL for Asterisk ARI, e.g. http://localhost:8088/ari",
    )
    asterisk_ari_username: str | None = Field(default=None)
    asterisk_ari_password: str | None = Field(default=None)
    asterisk_stasis_app: str = Field(
        default="voice-bridge",
        description="ARI stasis application name used by the dialplan.",
    )
    ari_autostart: bool = Field(
        default=True,
        description="If true, the HTTP app connects to ARI and handles calls on startup.",
    )
    ari_reconnect_delay_seconds: float = Field(default=5.0, ge=0.0)
    ari_max_reconnect_delay_seconds: float = Field(default=60.0, ge=0.0)
    ari_command_timeout_seconds: float = Field(default=10.0, gt=0.0)

    # Call flow
    call_prompts: list[str] = Field(
        default_factory=lambda: ["hello-world"],
        description="Ordered media played after answering. Bare names are played as sound:<name>.",
    )
    recording_enabled: bool = Field(default=False)
    pipeline_enabled: bool = Field(
        default=False,
        description="If true, recorded caller audio runs through transcription, completion and TTS.",
    )
    playback_timeout_seconds: float = Field(default=120.0, gt=0.0)

    # Recording
    recording_format: str = Field(default="wav")
    recording_ack_timeout_seconds: float = Field(default=10.0, gt=0.0)
    recording_max_duration_seconds: int = Field(default=300, ge=0)
    recording_max_silence_seconds: int = Field(default=3, ge=0)
    recording_finish_timeout_seconds: float = Field(default=330.0, gt=0.0)
    recording_dir: Path | None = Field(
        default=None,
        description="Directory where Asterisk stores recordings, as seen from this process.",
    )
    recording_search_dirs: list[Path] = Field(
        default_factory=lambda: [
            Path("/var/spool/asterisk/recording"),
            Path("/var/spool/asterisk/monitor"),
        ],
        description="Probed for finished recordings when recording_dir is not configured.",
    )

    # Audio pipeline (OpenAI)
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    transcription_model: str = Field(default="whisper-1")
    transcription_language: str | None = Field(default=None)
    completion_model: str = Field(default="gpt-4")
    completion_temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    completion_max_tokens: int = Field(default=500, gt=0)
    tts_model: str = Field(default="tts-1")
    tts_voice: str = Field(default="nova")
    tts_format: str = Field(default="wav")
    pipeline_timeout_seconds: float = Field(default=60.0, gt=0.0)
    system_prompt: str = Field(default_factory=lambda: load_prompt("call_assistant.txt"))

    # Generated audio served back to the call-control server
    audio_output_dir: Path = Field(default=Path("./data/audio"))
    audio_public_base_url: str | None = Field(
        default=None,
        description="Public base URL of the /audio static mount, e.g. http://bridge:8000/audio.",
    )

    @field_validator("audio_output_dir")
    @classmethod
    def ensure_audio_output_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
