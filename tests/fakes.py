"""Fake transports and WebRTC objects shared by the test modules."""
from __future__ import annotations

import asyncio
import json
from typing import Any, Callable, Iterable, Optional

import httpx


def sse(content: str) -> bytes:
    return f"data: {json.dumps({'choices': [{'delta': {'content': content}}]})}\n".encode("utf-8")


DONE = b"data: [DONE]\n"


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given chunks, optionally stalling or failing midway."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        *,
        hang: Optional[asyncio.Event] = None,
        tail: Iterable[bytes] = (),
        error: Optional[Exception] = None,
    ) -> None:
        self._chunks = list(chunks)
        self._hang = hang
        self._tail = list(tail)
        self._error = error

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk
        if self._hang is not None:
            await self._hang.wait()
        for chunk in self._tail:
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        pass


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class Emitter:
    """Minimal ``.on(event, handler)`` registry in the style of aiortc objects."""

    def __init__(self) -> None:
        self.handlers: dict[str, list[Callable[..., Any]]] = {}

    def on(self, event: str, handler: Callable[..., Any]) -> None:
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event: str, *args: Any) -> None:
        for handler in self.handlers.get(event, []):
            handler(*args)


class FakeTrack:
    def __init__(self, kind: str = "audio") -> None:
        self.kind = kind
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeChannel(Emitter):
    def __init__(self, label: str) -> None:
        super().__init__()
        self.label = label
        self.readyState = "connecting"
        self.sent: list[str] = []
        self.close_calls = 0

    def open(self) -> None:
        self.readyState = "open"
        self.emit("open")

    def send(self, data: str) -> None:
        self.sent.append(data)

    def close(self) -> None:
        self.close_calls += 1
        if self.readyState != "closed":
            self.readyState = "closed"
            self.emit("close")


class FakeDescription:
    def __init__(self, sdp: str, type: str) -> None:
        self.sdp = sdp
        self.type = type


class FakePeerConnection(Emitter):
    """Opens its data channel as soon as the remote answer is applied."""

    def __init__(self, *, open_channel: bool = True) -> None:
        super().__init__()
        self.tracks: list[FakeTrack] = []
        self.channel: Optional[FakeChannel] = None
        self.localDescription: Optional[FakeDescription] = None
        self.remoteDescription: Any = None
        self.closed = False
        self._open_channel = open_channel

    def addTrack(self, track: FakeTrack) -> None:
        self.tracks.append(track)

    def createDataChannel(self, label: str) -> FakeChannel:
        self.channel = FakeChannel(label)
        return self.channel

    async def createOffer(self) -> FakeDescription:
        return FakeDescription("v=0 local-offer", "offer")

    async def setLocalDescription(self, description: FakeDescription) -> None:
        self.localDescription = description

    async def setRemoteDescription(self, description: Any) -> None:
        self.remoteDescription = description
        if self._open_channel and self.channel is not None:
            asyncio.get_running_loop().call_soon(self.channel.open)

    async def close(self) -> None:
        self.closed = True
        if self.channel is not None:
            self.channel.close()


class FakeSignaling:
    def __init__(
        self,
        *,
        credential_error: Optional[Exception] = None,
        negotiation_error: Optional[Exception] = None,
        answer_gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.credential_error = credential_error
        self.negotiation_error = negotiation_error
        self.answer_gate = answer_gate
        self.offers: list[tuple[str, str]] = []

    async def acquire_ephemeral_credential(self) -> str:
        if self.credential_error is not None:
            raise self.credential_error
        return "ek_test"

    async def exchange_offer(self, sdp_offer: str, token: str) -> str:
        self.offers.append((sdp_offer, token))
        if self.answer_gate is not None:
            await self.answer_gate.wait()
        if self.negotiation_error is not None:
            raise self.negotiation_error
        return "v=0 remote-answer"


class FakeMedia:
    def __init__(self, *, error: Optional[Exception] = None) -> None:
        self.error = error
        self.tracks: list[FakeTrack] = []
        self.constraints: Any = None

    async def get_user_media(self, constraints: Any) -> list[FakeTrack]:
        self.constraints = constraints
        if self.error is not None:
            raise self.error
        self.tracks = [FakeTrack("audio")]
        return list(self.tracks)


class FakeSink:
    def __init__(self) -> None:
        self.attached: list[Any] = []
        self.detach_calls = 0

    def attach(self, track: Any) -> None:
        self.attached.append(track)

    async def detach(self) -> None:
        self.detach_calls += 1
