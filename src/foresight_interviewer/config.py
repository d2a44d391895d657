"""
Application configuration using pydantic-settings.

Loads configuration from environment variables (prefix ``FORESIGHT_``) and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FORESIGHT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # LLM Configuration (Ollama)
    llm_model_name: str = Field(
        default="gpt-oss:20b",
        description="Ollama model name used for question generation",
    )
    llm_timeout: int = Field(
        default=120,
        description="Timeout in seconds for a single Ollama invocation",
    )
    llm_max_retries: int = Field(
        default=0,
        description="Retries per Ollama invocation (question generation is single-attempt)",
    )
    generation_timeout_s: float = Field(
        default=90.0,
        description="Upper bound in seconds on one next-question request",
    )

    # Session timing
    language: Literal["en-US", "en-IN", "hi-IN"] = Field(
        default="en-US",
        description="Interview language, fixed for the whole session",
    )
    submit_debounce_ms: int = Field(
        default=300,
        description="Window in which duplicate response submissions are ignored",
    )
    conclude_settle_ms: int = Field(
        default=500,
        description="Delay between the end of the closing remark and FINISHED",
    )
    reveal_interval_ms: int = Field(
        default=50,
        description="Per-character interval of the progressive question reveal",
    )

    # Speech output (Piper)
    tts_enabled: bool = Field(default=True, description="Speak questions aloud in voice mode")
    piper_bin: str = Field(default="piper", description="Path/name of the Piper TTS binary")
    piper_model: str | None = Field(
        default=None,
        description="Default Piper .onnx voice model",
    )
    piper_voices: dict[str, str] = Field(
        default_factory=dict,
        description='Per-language Piper voices, e.g. {"hi-IN": "/voices/hi_IN.onnx"}',
    )
    piper_timeout_s: float = Field(
        default=60.0,
        description="Timeout in seconds per Piper synthesis chunk",
    )

    # Speech capture
    live_capture_enabled: bool = Field(
        default=True,
        description="Try live (streaming) transcription before record-and-upload",
    )
    live_interim_interval_s: float = Field(
        default=1.0,
        description="How often the live recognizer emits interim results",
    )
    live_segment_s: float = Field(
        default=6.0,
        description="Audio length after which a live segment is finalized",
    )
    live_max_restarts: int = Field(
        default=20,
        description="Consecutive unexpected live-recognizer endings tolerated before falling back",
    )
    stt_model: str = Field(default="small", description="faster-whisper model size")
    stt_device: Literal["cpu", "cuda", "auto"] = Field(default="cpu", description="faster-whisper device")
    stt_compute_type: str | None = Field(default=None, description="faster-whisper compute type")
    speech_backend_url: str | None = Field(
        default=None,
        description="Base URL of a remote transcription backend (POST /transcribe-speech)",
    )
    speech_backend_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for remote transcription uploads",
    )
    sample_rate: int = Field(default=16000, description="Microphone sample rate")

    # Application
    artifacts_dir: str = Field(
        default="data/interviews",
        description="Where session results and the TTS cache are written",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application settings instance.
    """
    return Settings()
