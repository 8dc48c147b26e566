"""Chat turn controller: routes user input to streamed text or image replies."""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Literal, Optional

import httpx

from ..models.schemas import ChatMessage, ChatRequest
from ..services.chat_stream import StreamFailed, StreamHandle, StreamHandler, StreamingResponseConsumer
from ..services.conversation import ConversationStore, Message
from ..services.edge_functions import EdgeFunctionsClient
from ..services.image_generation import ImageGenerationService
from ..services.transcription import TranscriptionService

logger = logging.getLogger(__name__)

_IMAGE_VERBS = re.compile(r"generate|create|draw|make|show me|picture of|image of", re.IGNORECASE)
_IMAGE_NOUNS = re.compile(r"image|picture|photo|illustration|art|drawing", re.IGNORECASE)


def is_image_request(content: str) -> bool:
    """Heuristic: an action verb and an image noun both appear in the text."""

    return bool(_IMAGE_VERBS.search(content)) and bool(_IMAGE_NOUNS.search(content))


class _DraftRelay(StreamHandler):
    """Mirrors stream deltas into the streaming assistant message."""

    def __init__(self, store: ConversationStore, message_id: str) -> None:
        self._store = store
        self._message_id = message_id
        self._content = ""

    def on_delta(self, text: str) -> None:
        self._content += text
        self._store.update(self._message_id, content=self._content)

    def on_aborted(self) -> None:
        logger.info("Request aborted")


class ChatAssistant:
    """Owns one conversation and the single in-flight reply for it."""

    def __init__(
        self,
        consumer: StreamingResponseConsumer,
        images: ImageGenerationService,
        transcriber: TranscriptionService,
        *,
        store: Optional[ConversationStore] = None,
    ) -> None:
        self._consumer = consumer
        self._images = images
        self._transcriber = transcriber
        self.store = store or ConversationStore()
        self._handle: Optional[StreamHandle] = None
        self._pending = 0

    @classmethod
    def create(cls, client: httpx.AsyncClient, *, store: Optional[ConversationStore] = None) -> "ChatAssistant":
        """Wire every collaborator from settings around one shared HTTP client."""

        functions = EdgeFunctionsClient(client)
        return cls(
            StreamingResponseConsumer(client),
            ImageGenerationService(functions),
            TranscriptionService(functions),
            store=store,
        )

    @property
    def messages(self) -> list[Message]:
        return self.store.messages

    @property
    def is_loading(self) -> bool:
        return self._pending > 0

    async def send_message(self, content: str, type: Literal["text", "image"] = "text") -> Optional[Message]:
        """Append the user turn and produce the assistant reply.

        Returns the assistant message (partial if the stream was stopped), or
        ``None`` for blank input. Request failures are logged and re-raised.
        """

        if not content.strip():
            return None
        self.store.append(Message(role="user", content=content, type="image" if type == "image" else "text"))
        return await self._reply(content, image=type == "image")

    async def send_voice_message(self, audio: bytes) -> Optional[Message]:
        """Transcribe a recorded voice note and answer it like a typed message."""

        self._pending += 1
        try:
            text = await self._transcriber.transcribe(audio)
        except Exception:
            logger.exception("Voice message error")
            raise
        finally:
            self._pending -= 1

        if not text:
            logger.warning("Could not transcribe audio; no message sent")
            return None
        self.store.append(Message(role="user", content=text, type="voice"))
        return await self._reply(text, image=False)

    def stop_generation(self) -> None:
        if self._handle is not None:
            self._handle.cancel()

    def clear_messages(self) -> None:
        self.store.clear()

    async def _reply(self, content: str, *, image: bool) -> Message:
        self._pending += 1
        try:
            if image or is_image_request(content):
                reply = await self._images.generate(content)
                return self.store.append(
                    Message(role="assistant", content=reply.content, type="image", image=reply.image)
                )
            return await self._stream_reply()
        except Exception as exc:
            logger.error("Chat error: %s", exc)
            raise
        finally:
            self._pending -= 1

    async def _stream_reply(self) -> Message:
        request = ChatRequest(messages=[ChatMessage(**m) for m in self.store.history()], type="text")
        draft = self.store.append(Message(role="assistant", content="", is_streaming=True))
        handle = self._consumer.start(request, _DraftRelay(self.store, draft.id))
        self._handle = handle
        try:
            outcome = await handle.wait()
        except asyncio.CancelledError:
            handle.cancel()
            raise
        finally:
            if self._handle is handle:
                self._handle = None
            self.store.update(draft.id, is_streaming=False)

        if isinstance(outcome, StreamFailed):
            if not outcome.content:
                self.store.remove(draft.id)
            raise outcome.error
        return self.store.get(draft.id) or draft
