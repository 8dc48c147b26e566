"""Realtime voice support endpoints: credential issuing and voice-note transcription."""
from __future__ import annotations

import logging
from typing import Optional

import httpx
import openai
from fastapi import APIRouter, Depends, Request

from ..models import schemas
from ..services.ai_gateway import RealtimeSessionIssuer, UpstreamError
from ..services.transcription import WhisperTranscriber
from .chat import error_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["realtime"])


def get_transcriber(request: Request) -> Optional[WhisperTranscriber]:
    """Build the transcriber once per app; ``None`` when no OpenAI key is configured."""

    transcriber = getattr(request.app.state, "transcriber", None)
    if transcriber is None:
        try:
            transcriber = WhisperTranscriber()
        except RuntimeError as exc:
            logger.error("Voice transcription unavailable: %s", exc)
            return None
        request.app.state.transcriber = transcriber
    return transcriber


@router.post("/realtime-session")
async def realtime_session(request: Request):
    """Hand out an ephemeral credential for one realtime negotiation."""

    try:
        issuer = RealtimeSessionIssuer(request.app.state.http_client)
        return await issuer.create_session()
    except UpstreamError as exc:
        return error_response(500, f"Failed to create realtime session ({exc.status})")
    except (RuntimeError, httpx.HTTPError) as exc:
        logger.error("Realtime session error: %s", exc)
        return error_response(500, str(exc) or "Unknown error")


@router.post("/voice-to-text", response_model=schemas.VoiceToTextResponse)
async def voice_to_text(
    payload: schemas.VoiceToTextRequest,
    transcriber: Optional[WhisperTranscriber] = Depends(get_transcriber),
):
    if transcriber is None:
        return error_response(500, "OPENAI_API_KEY is not configured")
    try:
        audio = WhisperTranscriber.decode_audio(payload.audio)
    except ValueError as exc:
        return error_response(400, str(exc))
    if not audio:
        return error_response(400, "No audio data provided")

    try:
        text = await transcriber.transcribe(audio)
    except openai.OpenAIError as exc:
        logger.exception("Voice-to-text error")
        return error_response(500, str(exc) or "Transcription failed")
    return schemas.VoiceToTextResponse(text=text)
