"""Upstream providers behind the gateway routes (chat completions, realtime sessions)."""
from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from ..config import settings
from ..models.schemas import ChatMessage, ImageReply

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful, friendly WhatsApp AI assistant. You can:
- Answer questions and have conversations
- Help with tasks, planning, and problem-solving
- Generate images when asked (you'll say you're generating an image)
- Provide information and explanations

Keep responses concise and conversational, like a chat message. Use emojis sparingly but naturally.
When the user asks to generate an image, acknowledge the request and describe what image you'll create."""


class UpstreamError(Exception):
    """An upstream provider answered with a non-success status."""

    def __init__(self, status: int, detail: str = "") -> None:
        super().__init__(f"upstream returned {status}")
        self.status = status
        self.detail = detail


class AIGatewayClient:
    """OpenAI-compatible chat completions gateway used for text and image turns."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        chat_model: Optional[str] = None,
        image_model: Optional[str] = None,
    ) -> None:
        key = api_key or settings.ai_gateway_api_key
        if not key:
            raise RuntimeError("AI_GATEWAY_API_KEY is not configured")
        self._client = client
        self._url = url or settings.ai_gateway_url
        self._headers = {"Authorization": f"Bearer {key}", "Content-Type": "application/json"}
        self._chat_model = chat_model or settings.chat_model
        self._image_model = image_model or settings.image_model

    async def open_chat_stream(self, messages: Sequence[ChatMessage]) -> httpx.Response:
        """Start a streamed completion; the caller owns (and must close) the response."""

        body = {
            "model": self._chat_model,
            "messages": [{"role": "system", "content": SYSTEM_PROMPT}]
            + [m.model_dump() for m in messages],
            "stream": True,
        }
        request = self._client.build_request("POST", self._url, json=body, headers=self._headers)
        response = await self._client.send(request, stream=True)
        if not response.is_success:
            detail = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            logger.error("Chat API error: %s %s", response.status_code, detail)
            raise UpstreamError(response.status_code, detail)
        logger.info("Streaming response started")
        return response

    async def generate_image(self, prompt: str) -> ImageReply:
        body = {
            "model": self._image_model,
            "messages": [{"role": "user", "content": f"Generate a high-quality image: {prompt}"}],
            "modalities": ["image", "text"],
        }
        response = await self._client.post(self._url, json=body, headers=self._headers)
        if not response.is_success:
            logger.error("Image generation error: %s %s", response.status_code, response.text)
            raise UpstreamError(response.status_code, response.text)

        data = response.json()
        message = _first_message(data)
        images = message.get("images") if isinstance(message.get("images"), list) else []
        image_url = None
        if images and isinstance(images[0], dict):
            image_url = (images[0].get("image_url") or {}).get("url")
        content = message.get("content") if isinstance(message.get("content"), str) else None
        logger.info("Image generation response received")
        return ImageReply(content=content or "Here's the image I created for you!", image=image_url)


class RealtimeSessionIssuer:
    """Mints ephemeral realtime credentials with the server-side OpenAI key."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        voice: Optional[str] = None,
    ) -> None:
        key = api_key or settings.openai_api_key
        if not key:
            raise RuntimeError("OPENAI_API_KEY is not configured")
        self._client = client
        self._api_key = key
        self._url = f"{(base_url or settings.realtime_base_url).rstrip('/')}/sessions"
        self._model = model or settings.realtime_model
        self._voice = voice or settings.realtime_voice

    async def create_session(self, *, instructions: Optional[str] = None) -> dict[str, Any]:
        body: dict[str, Any] = {"model": self._model, "voice": self._voice}
        if instructions:
            body["instructions"] = instructions
        response = await self._client.post(
            self._url,
            json=body,
            headers={"Authorization": f"Bearer {self._api_key}", "Content-Type": "application/json"},
        )
        if not response.is_success:
            logger.error("Realtime session error: %s %s", response.status_code, response.text)
            raise UpstreamError(response.status_code, response.text)
        logger.info("Realtime session created")
        return response.json()


def _first_message(data: Any) -> dict[str, Any]:
    if not isinstance(data, dict):
        return {}
    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return {}
    message = choices[0].get("message")
    return message if isinstance(message, dict) else {}
