"""Application configuration using environment variables."""

import re
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_GOOGLE_API_KEY_PATTERN = re.compile(r"^AIza[0-9A-Za-z_\-]{35}$")


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Generator (OpenRouter-compatible chat completions)
    openrouter_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "openrouter_base_url"),
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_APP_TITLE", "openrouter_app_name"),
    )
    default_model: str = Field(
        default="google/gemini-2.0-flash-001",
        validation_alias=AliasChoices("OPENROUTER_DEFAULT_MODEL", "default_model"),
    )
    request_timeout: float = Field(
        default=60.0,
        validation_alias=AliasChoices("OPENROUTER_TIMEOUT", "request_timeout"),
        ge=1,
    )
    max_output_tokens: int = Field(
        default=200,
        ge=1,
        validation_alias=AliasChoices("GENERATION_MAX_TOKENS", "max_output_tokens"),
    )
    generation_temperature: float = Field(
        default=0.7,
        ge=0,
        le=2,
        validation_alias=AliasChoices("GENERATION_TEMPERATURE", "generation_temperature"),
    )
    generation_top_p: float = Field(
        default=0.8,
        gt=0,
        le=1,
        validation_alias=AliasChoices("GENERATION_TOP_P", "generation_top_p"),
    )
    generation_top_k: int = Field(
        default=40,
        ge=0,
        validation_alias=AliasChoices("GENERATION_TOP_K", "generation_top_k"),
    )
    generation_timeout: Optional[float] = Field(
        default=None,
        gt=0,
        validation_alias=AliasChoices("GENERATION_TIMEOUT", "generation_timeout"),
        description="Upper bound in seconds for a single reply; unset means no limit.",
    )

    # Synthesizer (Google Cloud Text-to-Speech REST API)
    google_tts_api_key: Optional[SecretStr] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_TTS_API_KEY", "google_tts_api_key"),
    )
    google_tts_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://texttospeech.googleapis.com/v1"),
        validation_alias=AliasChoices("GOOGLE_TTS_BASE_URL", "google_tts_base_url"),
    )
    tts_language_code: str = Field(
        default="pt-BR",
        validation_alias=AliasChoices("TTS_LANGUAGE_CODE", "tts_language_code"),
    )
    tts_voice_name: str = Field(
        default="pt-BR-Neural2-B",
        validation_alias=AliasChoices("TTS_VOICE_NAME", "tts_voice_name"),
    )
    tts_voice_gender: str = Field(
        default="MALE",
        validation_alias=AliasChoices("TTS_VOICE_GENDER", "tts_voice_gender"),
    )
    tts_audio_encoding: str = Field(
        default="LINEAR16",
        validation_alias=AliasChoices("TTS_AUDIO_ENCODING", "tts_audio_encoding"),
    )
    tts_sample_rate: int = Field(
        default=16000,
        ge=8000,
        le=48000,
        validation_alias=AliasChoices("TTS_SAMPLE_RATE", "tts_sample_rate"),
    )
    tts_effects_profile: str = Field(
        default="large-home-entertainment-class-device",
        validation_alias=AliasChoices("TTS_EFFECTS_PROFILE", "tts_effects_profile"),
    )
    tts_pitch: float = Field(
        default=-2.0,
        ge=-20,
        le=20,
        validation_alias=AliasChoices("TTS_PITCH", "tts_pitch"),
    )
    tts_speaking_rate: float = Field(
        default=1.3,
        ge=0.25,
        le=4.0,
        validation_alias=AliasChoices("TTS_SPEAKING_RATE", "tts_speaking_rate"),
    )
    tts_timeout: float = Field(
        default=30.0,
        ge=1,
        validation_alias=AliasChoices("TTS_TIMEOUT", "tts_timeout"),
    )

    # Streaming and session housekeeping
    audio_chunk_bytes: int = Field(
        default=4096,
        ge=1,
        validation_alias=AliasChoices("AUDIO_CHUNK_BYTES", "audio_chunk_bytes"),
    )
    audio_chunk_delay: float = Field(
        default=0.002,
        ge=0,
        validation_alias=AliasChoices("AUDIO_CHUNK_DELAY", "audio_chunk_delay"),
    )
    idle_timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices("SESSION_IDLE_TIMEOUT", "idle_timeout_seconds"),
    )
    sweep_interval_seconds: float = Field(
        default=60.0,
        gt=0,
        validation_alias=AliasChoices("SESSION_SWEEP_INTERVAL", "sweep_interval_seconds"),
    )
    heartbeat_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        validation_alias=AliasChoices("HEARTBEAT_INTERVAL", "heartbeat_interval_seconds"),
    )
    supersede_grace_seconds: float = Field(
        default=1.0,
        ge=0,
        validation_alias=AliasChoices("SUPERSEDE_GRACE", "supersede_grace_seconds"),
    )
    event_queue_size: int = Field(
        default=32,
        ge=1,
        validation_alias=AliasChoices("EVENT_QUEUE_SIZE", "event_queue_size"),
    )

    # Logging and server
    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices("LOGGING_SETTINGS_PATH", "logging_settings_path"),
    )
    app_log_dir: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("APP_LOG_DIR", "app_log_dir"),
    )
    host: str = Field(default="0.0.0.0", validation_alias=AliasChoices("HOST", "host"))
    port: int = Field(default=8080, validation_alias=AliasChoices("PORT", "port"))


def validate_api_keys(settings: Settings) -> list[str]:
    """Return human-readable problems with the configured provider credentials."""

    errors: list[str] = []

    openrouter_key = (
        settings.openrouter_api_key.get_secret_value()
        if settings.openrouter_api_key
        else ""
    )
    if not openrouter_key.strip():
        errors.append("OpenRouter API key (OPENROUTER_API_KEY) is missing")

    google_key = (
        settings.google_tts_api_key.get_secret_value()
        if settings.google_tts_api_key
        else ""
    )
    if not google_key:
        errors.append("Google Cloud TTS API key (GOOGLE_TTS_API_KEY) is missing")
    elif not _GOOGLE_API_KEY_PATTERN.match(google_key):
        errors.append("Google Cloud TTS API key (GOOGLE_TTS_API_KEY) is invalid format")

    return errors


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["Settings", "get_settings", "validate_api_keys"]
