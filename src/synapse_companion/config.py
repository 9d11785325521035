"""
Application configuration using pydantic-settings.

Loads configuration from environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Hosted language model (Gemini)
    gemini_api_key: str | None = Field(
        default=None,
        description="API key for the Gemini Developer API. Prompted for when unset.",
    )
    gemini_model: str = Field(
        default="gemini-2.5-flash",
        description="Gemini model used for classification, replies and fact extraction",
    )
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com",
        description="Base URL of the Gemini REST API",
    )
    llm_timeout: float = Field(
        default=60.0,
        description="Transport timeout in seconds for model requests",
    )

    # Profile persistence
    profile_path: str = Field(
        default="./data/profile.json",
        description="JSON file holding the remembered user profile",
    )
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL; when set the profile is stored in a database instead",
    )

    # Speech capture
    speech_pause_seconds: float = Field(
        default=1.5,
        description="Silence after speech that ends a user turn",
    )
    stt_model_size: str = Field(default="small", description="faster-whisper model size")
    stt_device: Literal["cpu", "cuda", "auto"] = Field(default="cpu", description="STT device")
    stt_language: str | None = Field(
        default=None,
        description="Force a recognition language; None lets the recogniser detect it",
    )

    # Speech playback (Piper)
    piper_bin: str = Field(default="piper", description="Path or name of the Piper TTS binary")
    piper_model: str | None = Field(default=None, description="Default Piper .onnx voice model")
    piper_voices_dir: str | None = Field(
        default=None,
        description="Directory scanned for additional Piper .onnx voices",
    )
    piper_timeout: float = Field(default=60.0, description="Timeout per Piper synthesis call")

    # Application
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Force DEBUG logging regardless of log_level",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
