"""Realtime voice session management over WebRTC."""
from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Union

import httpx
from aiortc import MediaStreamTrack, RTCPeerConnection, RTCSessionDescription

from ..errors import SessionClosedError
from .edge_functions import EdgeFunctionsClient
from .media import AudioConstraints, MicrophoneCapture, RemoteAudioSink
from .signaling import SignalingClient

logger = logging.getLogger(__name__)

CONTROL_CHANNEL_LABEL = "oai-events"


class SessionState(Enum):
    """Connection lifecycle; ``DISCONNECTED`` is terminal."""

    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.IDLE: frozenset({SessionState.CONNECTING, SessionState.DISCONNECTED}),
    SessionState.CONNECTING: frozenset({SessionState.CONNECTED, SessionState.DISCONNECTED}),
    SessionState.CONNECTED: frozenset({SessionState.DISCONNECTED}),
    SessionState.DISCONNECTED: frozenset(),
}


class ControlEventKind(Enum):
    AUDIO_DELTA = "response.audio.delta"
    AUDIO_DONE = "response.audio.done"
    RESPONSE_DONE = "response.done"
    ERROR = "error"
    OTHER = "other"


_KINDS_BY_TYPE = {kind.value: kind for kind in ControlEventKind if kind is not ControlEventKind.OTHER}


@dataclass(frozen=True, slots=True)
class ControlEvent:
    """One JSON message from the control channel; ``data`` is the decoded object as received."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def kind(self) -> ControlEventKind:
        return _KINDS_BY_TYPE.get(self.type, ControlEventKind.OTHER)

    @classmethod
    def from_message(cls, message: Union[str, bytes]) -> "ControlEvent":
        if isinstance(message, bytes):
            message = message.decode("utf-8")
        data = json.loads(message)
        if not isinstance(data, dict):
            raise ValueError("control event must be a JSON object")
        event_type = data.get("type")
        return cls(type=event_type if isinstance(event_type, str) else "", data=data)


@dataclass(frozen=True, slots=True)
class SessionStateChanged:
    state: SessionState

    @property
    def connected(self) -> bool:
        return self.state is SessionState.CONNECTED


SessionEvent = Union[SessionStateChanged, ControlEvent]


class SessionHandler:
    """Callback sink for a :class:`RealtimeVoiceSession`. Override what you need."""

    def on_control_event(self, event: ControlEvent) -> None:
        pass

    def on_state_change(self, connected: bool) -> None:
        pass

    def on_speaking_change(self, speaking: bool) -> None:
        pass


class RealtimeVoiceSession:
    """Owns the peer connection, local capture and control channel of one call.

    A session is single-use: once ``DISCONNECTED`` a new instance is needed to
    reconnect. ``open()`` has no timeout; race it externally and ``close()``
    on expiry.
    """

    def __init__(
        self,
        signaling: SignalingClient,
        *,
        handler: Optional[SessionHandler] = None,
        media: Optional[MicrophoneCapture] = None,
        sink: Optional[RemoteAudioSink] = None,
        peer_connection_factory: Callable[[], RTCPeerConnection] = RTCPeerConnection,
        constraints: AudioConstraints = AudioConstraints(),
        channel_label: str = CONTROL_CHANNEL_LABEL,
    ) -> None:
        self._signaling = signaling
        self._handler = handler or SessionHandler()
        self._media = media or MicrophoneCapture()
        self._sink = sink or RemoteAudioSink()
        self._pc_factory = peer_connection_factory
        self._constraints = constraints
        self._channel_label = channel_label

        self._state = SessionState.IDLE
        self._speaking = False
        self._closing = False
        self._ready = asyncio.Event()
        self._queue: Optional[asyncio.Queue[SessionEvent]] = None
        self._remote_close: Optional[asyncio.Future] = None

        self._pc: Optional[RTCPeerConnection] = None
        self._channel: Any = None
        self._tracks: list[MediaStreamTrack] = []

    @classmethod
    def create(cls, client: httpx.AsyncClient, **kwargs: Any) -> "RealtimeVoiceSession":
        """Build a session whose signaling runs over ``client`` with settings defaults."""

        return cls(SignalingClient(client, EdgeFunctionsClient(client)), **kwargs)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is SessionState.CONNECTED

    @property
    def speaking(self) -> Optional[bool]:
        """``True`` while the model is speaking; ``None`` outside ``CONNECTED``."""

        if self._state is not SessionState.CONNECTED:
            return None
        return self._speaking

    async def __aenter__(self) -> "RealtimeVoiceSession":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._state is not SessionState.IDLE:
            raise SessionClosedError("Session already used; create a new one to reconnect")
        self._set_state(SessionState.CONNECTING)

        try:
            token = await self._signaling.acquire_ephemeral_credential()
            self._ensure_live()
            logger.info("Got ephemeral token, setting up WebRTC...")

            self._pc = self._pc_factory()
            self._pc.on("track", self._on_track)

            tracks = await self._media.get_user_media(self._constraints)
            self._tracks.extend(tracks)
            self._ensure_live()
            for track in tracks:
                self._pc.addTrack(track)

            self._channel = self._pc.createDataChannel(self._channel_label)
            self._channel.on("open", self._on_channel_open)
            self._channel.on("close", self._on_channel_close)
            self._channel.on("message", self._on_channel_message)

            offer = await self._pc.createOffer()
            await self._pc.setLocalDescription(offer)
            self._ensure_live()

            answer = await self._signaling.exchange_offer(self._pc.localDescription.sdp, token)
            self._ensure_live()
            await self._pc.setRemoteDescription(RTCSessionDescription(sdp=answer, type="answer"))

            await self._ready.wait()
            if self._state is not SessionState.CONNECTED:
                raise SessionClosedError("Connection closed before it was established")
            logger.info("WebRTC connection established")
        except BaseException as exc:
            logger.error("Error initializing realtime session: %r", exc)
            await self.close()
            raise

    async def close(self) -> None:
        """Release everything this session holds. Safe from any state, any number of times."""

        logger.info("Disconnecting realtime session...")
        self._closing = True
        pending = self._remote_close
        if pending is not None and pending is not asyncio.current_task() and not pending.done():
            await asyncio.wait({pending})

        tracks, self._tracks = self._tracks, []
        for track in tracks:
            try:
                track.stop()
            except Exception:
                logger.exception("Failed to stop local %s track", getattr(track, "kind", "media"))

        channel, self._channel = self._channel, None
        if channel is not None and channel.readyState != "closed":
            try:
                channel.close()
            except Exception:
                logger.exception("Failed to close control channel")

        pc, self._pc = self._pc, None
        if pc is not None:
            try:
                await pc.close()
            except Exception:
                logger.exception("Failed to close peer connection")

        try:
            await self._sink.detach()
        except Exception:
            logger.exception("Failed to detach remote audio sink")

        self._set_state(SessionState.DISCONNECTED)

    def send_event(self, event: dict[str, Any]) -> None:
        if self._channel is None or self._channel.readyState != "open":
            raise SessionClosedError("Connection not ready")
        self._channel.send(json.dumps(event))

    def send_text_message(self, text: str) -> None:
        """Add a user text item to the conversation and ask for a response."""

        self.send_event(
            {
                "type": "conversation.item.create",
                "item": {
                    "type": "message",
                    "role": "user",
                    "content": [{"type": "input_text", "text": text}],
                },
            }
        )
        self.send_event({"type": "response.create"})

    async def events(self) -> AsyncIterator[SessionEvent]:
        """Yield state changes and control events in arrival order until disconnected.

        The first iterator created on a connected session starts with the
        current ``CONNECTED`` state; earlier control events are not replayed.
        Iterating a session that is already disconnected ends immediately.
        """

        if self._queue is None:
            self._queue = asyncio.Queue()
            if self._state is SessionState.CONNECTED:
                self._queue.put_nowait(SessionStateChanged(self._state))
        while True:
            if self._state is SessionState.DISCONNECTED and self._queue.empty():
                return
            event = await self._queue.get()
            yield event
            if isinstance(event, SessionStateChanged) and event.state is SessionState.DISCONNECTED:
                return

    def _ensure_live(self) -> None:
        if self._state is SessionState.DISCONNECTED:
            raise SessionClosedError("Session closed while connecting")

    def _publish(self, event: SessionEvent) -> None:
        if self._queue is not None:
            self._queue.put_nowait(event)

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        if state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"invalid session transition {self._state.value} -> {state.value}")

        logger.info("Realtime session state: %s -> %s", self._state.value, state.value)
        self._state = state
        self._speaking = False
        if state in (SessionState.CONNECTED, SessionState.DISCONNECTED):
            self._ready.set()
            self._publish(SessionStateChanged(state))
            self._handler.on_state_change(state is SessionState.CONNECTED)

    def _set_speaking(self, speaking: bool) -> None:
        if self._state is not SessionState.CONNECTED or speaking == self._speaking:
            return
        self._speaking = speaking
        self._handler.on_speaking_change(speaking)

    def _on_track(self, track: MediaStreamTrack) -> None:
        logger.info("Received remote %s track", track.kind)
        if track.kind == "audio":
            self._sink.attach(track)

    def _on_channel_open(self) -> None:
        logger.info("Control channel opened")
        if self._state is SessionState.CONNECTING:
            self._set_state(SessionState.CONNECTED)

    def _on_channel_close(self) -> None:
        logger.info("Control channel closed")
        if self._closing:
            return
        self._set_state(SessionState.DISCONNECTED)
        # Remote hang-up: the state is already terminal, release what is still held.
        self._remote_close = asyncio.ensure_future(self.close())
        self._remote_close.add_done_callback(_log_teardown_failure)

    def _on_channel_message(self, message: Union[str, bytes]) -> None:
        try:
            event = ControlEvent.from_message(message)
        except ValueError as exc:
            logger.warning("Dropping undecodable control event: %s", exc)
            return

        logger.debug("Received event: %s", event.type)
        kind = event.kind
        if kind is ControlEventKind.AUDIO_DELTA:
            self._set_speaking(True)
        elif kind in (ControlEventKind.AUDIO_DONE, ControlEventKind.RESPONSE_DONE):
            self._set_speaking(False)
        elif kind is ControlEventKind.ERROR:
            logger.error("Realtime error event: %s", event.data.get("error"))

        self._publish(event)
        self._handler.on_control_event(event)



def _log_teardown_failure(task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error("Teardown after remote close failed", exc_info=task.exception())

__all__ = [
    "CONTROL_CHANNEL_LABEL",
    "ControlEvent",
    "ControlEventKind",
    "RealtimeVoiceSession",
    "SessionEvent",
    "SessionHandler",
    "SessionState",
    "SessionStateChanged",
]
