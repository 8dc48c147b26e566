"""Chat function: streamed text replies and one-shot image replies."""
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from ..models import schemas
from ..services.ai_gateway import AIGatewayClient, UpstreamError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["chat"])


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(schemas.ErrorBody(error=message).model_dump(), status_code=status_code)


def upstream_error_response(exc: UpstreamError, fallback: str) -> JSONResponse:
    if exc.status == 429:
        return error_response(429, "Rate limit exceeded. Please try again later.")
    if exc.status == 402:
        return error_response(402, "Please add credits to continue using AI features.")
    return error_response(500, fallback)


@router.post("/chat")
async def chat(payload: schemas.ChatRequest, request: Request):
    """Relay the upstream completion stream, or answer an image request in one shot."""

    logger.info("Processing chat request: type=%s messages=%d", payload.type, len(payload.messages))
    try:
        gateway = AIGatewayClient(request.app.state.http_client)
        if payload.type == "image" and payload.image_prompt:
            logger.info("Generating image with prompt: %s", payload.image_prompt)
            try:
                return await gateway.generate_image(payload.image_prompt)
            except UpstreamError as exc:
                return upstream_error_response(exc, "Failed to generate image")

        try:
            upstream = await gateway.open_chat_stream(payload.messages)
        except UpstreamError as exc:
            return upstream_error_response(exc, "AI gateway error")
    except (RuntimeError, httpx.HTTPError) as exc:
        logger.error("Chat function error: %s", exc)
        return error_response(500, str(exc) or "Unknown error")

    return StreamingResponse(
        upstream.aiter_raw(),
        media_type="text/event-stream",
        background=BackgroundTask(upstream.aclose),
    )
