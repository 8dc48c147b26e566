"""Voice-note transcription: the client call and the server-side Whisper wrapper."""
from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
from typing import Optional

from openai import OpenAI

from ..config import settings
from ..errors import RequestFailedError
from .edge_functions import EdgeFunctionsClient

logger = logging.getLogger(__name__)

VOICE_TO_TEXT_FUNCTION = "voice-to-text"


class TranscriptionService:
    """Sends a recorded voice note to the voice-to-text function."""

    def __init__(self, functions: EdgeFunctionsClient) -> None:
        self._functions = functions

    async def transcribe(self, audio: bytes) -> str:
        encoded = base64.b64encode(audio).decode("ascii")
        data = await self._functions.invoke(VOICE_TO_TEXT_FUNCTION, {"audio": encoded})
        if not isinstance(data, dict):
            raise RequestFailedError("voice-to-text returned an unexpected payload")
        text = data.get("text")
        return text.strip() if isinstance(text, str) else ""


class WhisperTranscriber:
    """Wraps OpenAI transcription for the voice-to-text route."""

    def __init__(self, *, api_key: Optional[str] = None, model: Optional[str] = None) -> None:
        key = api_key or settings.openai_api_key
        if not key:
            raise RuntimeError("OPENAI_API_KEY required for voice transcription")
        self._client = OpenAI(api_key=key)
        self._model = model or settings.transcription_model

    @staticmethod
    def decode_audio(encoded: str) -> bytes:
        try:
            return base64.b64decode(encoded, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("audio must be base64 encoded") from exc

    async def transcribe(self, audio: bytes, *, filename: str = "audio.webm") -> str:
        def _run() -> str:
            f = io.BytesIO(audio)
            f.name = filename  # openai python SDK reads name for mime
            resp = self._client.audio.transcriptions.create(model=self._model, file=f)
            return getattr(resp, "text", "").strip()

        text = await asyncio.to_thread(_run)
        logger.info("Transcribed %d bytes of audio into %d chars", len(audio), len(text))
        return text
