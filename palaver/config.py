"""Configuration helpers for the chat client and its gateway."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass
class Settings:
    """Centralized environment-driven configuration.

    Values are read once when the module is imported. Nothing is enforced here;
    the component that needs a key raises when it is constructed without one.
    """

    # Functions the client talks to (chat stream, image, credential, transcription).
    functions_url: str = os.getenv("FUNCTIONS_URL", "http://localhost:8000/functions/v1")
    functions_api_key: Optional[str] = os.getenv("FUNCTIONS_API_KEY")
    http_timeout: float = float(os.getenv("HTTP_TIMEOUT", "60"))

    # Upstream AI gateway used by the chat function.
    ai_gateway_url: str = os.getenv("AI_GATEWAY_URL", "https://ai.gateway.lovable.dev/v1/chat/completions")
    ai_gateway_api_key: Optional[str] = os.getenv("AI_GATEWAY_API_KEY")
    chat_model: str = os.getenv("CHAT_MODEL", "google/gemini-2.5-flash")
    image_model: str = os.getenv("IMAGE_MODEL", "google/gemini-2.5-flash-image")

    # OpenAI realtime + transcription.
    openai_api_key: Optional[str] = os.getenv("OPENAI_API_KEY")
    realtime_base_url: str = os.getenv("REALTIME_BASE_URL", "https://api.openai.com/v1/realtime")
    realtime_model: str = os.getenv("REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17")
    realtime_voice: str = os.getenv("REALTIME_VOICE", "alloy")
    transcription_model: str = os.getenv("TRANSCRIPTION_MODEL", "gpt-4o-transcribe")

    # Local audio devices (ffmpeg device name + format, e.g. "default" / "pulse").
    audio_input_device: str = os.getenv("AUDIO_INPUT_DEVICE", "default")
    audio_input_format: Optional[str] = os.getenv("AUDIO_INPUT_FORMAT", "pulse")
    audio_echo_cancel_device: Optional[str] = os.getenv("AUDIO_ECHO_CANCEL_DEVICE")
    audio_output_device: Optional[str] = os.getenv("AUDIO_OUTPUT_DEVICE")
    audio_output_format: Optional[str] = os.getenv("AUDIO_OUTPUT_FORMAT", "pulse")

    # Ceilings for a candidate frame that keeps failing to decode.
    stream_max_frame_retries: int = _env_int("STREAM_MAX_FRAME_RETRIES", 8)
    stream_max_frame_bytes: int = _env_int("STREAM_MAX_FRAME_BYTES", 1024 * 1024)

    log_level: str = os.getenv("LOG_LEVEL", "INFO")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance to avoid repeated environment reads."""

    return Settings()


settings = get_settings()
