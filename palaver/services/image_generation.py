"""Image turns through the chat function (non-streamed)."""
from __future__ import annotations

import logging
from typing import Sequence

from pydantic import ValidationError

from ..errors import RequestFailedError
from ..models.schemas import ChatMessage, ChatRequest, ImageReply
from .edge_functions import EdgeFunctionsClient

logger = logging.getLogger(__name__)

CHAT_FUNCTION = "chat"
DEFAULT_IMAGE_CAPTION = "Here's the image I created!"


class ImageGenerationService:
    """Asks the chat function for an image and returns its caption + image URL."""

    def __init__(self, functions: EdgeFunctionsClient) -> None:
        self._functions = functions

    async def generate(self, prompt: str, *, messages: Sequence[ChatMessage] | None = None) -> ImageReply:
        request = ChatRequest(
            messages=list(messages) if messages else [ChatMessage(role="user", content=prompt)],
            type="image",
            image_prompt=prompt,
        )
        logger.info("Requesting image generation")
        data = await self._functions.invoke(CHAT_FUNCTION, request.to_wire())

        if not isinstance(data, dict):
            raise RequestFailedError("Image generation returned an unexpected payload")
        if not (isinstance(data.get("content"), str) and data["content"].strip()):
            data = {**data, "content": DEFAULT_IMAGE_CAPTION}
        try:
            return ImageReply.model_validate(data)
        except ValidationError as exc:
            raise RequestFailedError("Image generation returned an unexpected payload") from exc
