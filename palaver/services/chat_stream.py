"""Incremental consumer for the streamed chat endpoint."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Iterator, Optional, Union

import httpx

from ..config import settings
from ..errors import RequestFailedError, error_for_status
from ..models.schemas import ChatRequest
from .event_frames import EventFrameParser, Terminate
from .frame_buffer import FrameBuffer

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StreamDelta:
    text: str
    content: str


@dataclass(frozen=True, slots=True)
class StreamCompleted:
    content: str


@dataclass(frozen=True, slots=True)
class StreamAborted:
    """User-initiated stop; not an error and never shown as one."""

    content: str


@dataclass(frozen=True, slots=True)
class StreamFailed:
    error: RequestFailedError
    content: str = ""


StreamEvent = Union[StreamDelta, StreamCompleted, StreamAborted, StreamFailed]
StreamOutcome = Union[StreamCompleted, StreamAborted, StreamFailed]


class AssistantDraft:
    """In-progress text of one assistant turn. Only ever grows while open."""

    def __init__(self) -> None:
        self._content = ""
        self._closed = False

    @property
    def content(self) -> str:
        return self._content

    @property
    def closed(self) -> bool:
        return self._closed

    def append(self, text: str) -> None:
        if self._closed:
            raise RuntimeError("assistant draft is closed")
        self._content += text

    def close(self) -> None:
        self._closed = True


class StreamHandler:
    """Callback sink for :meth:`StreamingResponseConsumer.start`. Override what you need."""

    def on_delta(self, text: str) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_error(self, error: RequestFailedError) -> None:
        pass

    def on_aborted(self) -> None:
        pass


def extract_delta(envelope: Any) -> Optional[str]:
    """Return ``choices[0].delta.content`` when the envelope carries one."""

    if not isinstance(envelope, dict):
        return None
    choices = envelope.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


def _resolve(parser: EventFrameParser, buffer: FrameBuffer, *, final: bool = False) -> Iterator[Optional[str]]:
    """Yield the delta texts buffered so far; ``None`` marks the termination sentinel."""

    for frame in parser.drain(buffer, final=final):
        if isinstance(frame, Terminate):
            yield None
            return
        text = extract_delta(frame.data)
        if text:
            yield text


class StreamHandle:
    """Cancellable handle over one running stream."""

    def __init__(self, task: asyncio.Task, draft: AssistantDraft) -> None:
        self._task = task
        self.draft = draft

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        self._task.cancel()

    async def wait(self) -> StreamOutcome:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if self._task.cancelled():
                return StreamAborted(self.draft.content)
            raise


class StreamingResponseConsumer:
    """Reads the chat function's text-event stream into an :class:`AssistantDraft`.

    :meth:`stream` is the primary surface: an async iterator of
    :data:`StreamEvent` variants in arrival order. :meth:`start` runs the same
    loop as a task and relays it to a :class:`StreamHandler`. Only one stream
    is active per consumer; starting another cancels the outstanding one.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        max_frame_retries: Optional[int] = None,
        max_frame_bytes: Optional[int] = None,
    ) -> None:
        self._client = client
        self._url = url or f"{settings.functions_url.rstrip('/')}/chat"
        self._api_key = api_key if api_key is not None else settings.functions_api_key
        self._max_frame_retries = (
            settings.stream_max_frame_retries if max_frame_retries is None else max_frame_retries
        )
        self._max_frame_bytes = settings.stream_max_frame_bytes if max_frame_bytes is None else max_frame_bytes
        self._active: Optional[StreamHandle] = None

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    @staticmethod
    async def _error_body(response: httpx.Response) -> Any:
        try:
            await response.aread()
            return response.json()
        except (httpx.HTTPError, ValueError):
            return None

    async def stream(
        self, request: ChatRequest, draft: Optional[AssistantDraft] = None
    ) -> AsyncIterator[StreamEvent]:
        draft = draft if draft is not None else AssistantDraft()
        buffer = FrameBuffer()
        parser = EventFrameParser(max_retries=self._max_frame_retries, max_frame_bytes=self._max_frame_bytes)
        failure: Optional[RequestFailedError] = None

        logger.info("Starting chat stream (%d messages)", len(request.messages))
        try:
            async with self._client.stream(
                "POST", self._url, json=request.to_wire(), headers=self._headers()
            ) as response:
                if not response.is_success:
                    failure = error_for_status(response.status_code, await self._error_body(response))
                    logger.warning("Chat stream rejected with status %s", response.status_code)
                else:
                    try:
                        terminated = False
                        async for chunk in response.aiter_bytes():
                            buffer.append(chunk)
                            for text in _resolve(parser, buffer):
                                if text is None:
                                    terminated = True
                                    break
                                draft.append(text)
                                yield StreamDelta(text, draft.content)
                            if terminated:
                                break
                        else:
                            buffer.finish()
                            for text in _resolve(parser, buffer, final=True):
                                if text is None:
                                    break
                                draft.append(text)
                                yield StreamDelta(text, draft.content)
                    except httpx.HTTPError as exc:
                        logger.warning("Chat stream read failed: %s", exc)
                        failure = RequestFailedError(str(exc) or None, status=response.status_code)
        except httpx.HTTPError as exc:
            logger.warning("Chat stream request failed: %s", exc)
            failure = RequestFailedError(str(exc) or None)
        finally:
            buffer.clear()
            draft.close()

        if failure is not None:
            yield StreamFailed(failure, draft.content)
            return
        logger.info("Chat stream complete (%d chars)", len(draft.content))
        yield StreamCompleted(draft.content)

    def start(self, request: ChatRequest, handler: Optional[StreamHandler] = None) -> StreamHandle:
        """Run :meth:`stream` in a task; must be called from a running loop."""

        if self._active is not None and not self._active.done:
            logger.info("Cancelling outstanding chat stream for a new request")
            self._active.cancel()

        handler = handler or StreamHandler()
        draft = AssistantDraft()
        task = asyncio.create_task(self._relay(request, handler, draft))

        def _cancelled_before_start(done: asyncio.Task) -> None:
            if done.cancelled():
                draft.close()
                handler.on_aborted()

        task.add_done_callback(_cancelled_before_start)
        handle = StreamHandle(task, draft)
        self._active = handle
        return handle

    async def _relay(self, request: ChatRequest, handler: StreamHandler, draft: AssistantDraft) -> StreamOutcome:
        try:
            async for event in self.stream(request, draft):
                if isinstance(event, StreamDelta):
                    handler.on_delta(event.text)
                elif isinstance(event, StreamCompleted):
                    handler.on_complete()
                    return event
                elif isinstance(event, StreamFailed):
                    handler.on_error(event.error)
                    return event
        except asyncio.CancelledError:
            logger.info("Chat stream aborted")
            draft.close()
            handler.on_aborted()
            return StreamAborted(draft.content)
        return StreamCompleted(draft.content)


__all__ = [
    "AssistantDraft",
    "StreamAborted",
    "StreamCompleted",
    "StreamDelta",
    "StreamEvent",
    "StreamFailed",
    "StreamHandle",
    "StreamHandler",
    "StreamOutcome",
    "StreamingResponseConsumer",
    "extract_delta",
]
