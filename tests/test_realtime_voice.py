from __future__ import annotations

import asyncio
import json

import pytest

from fakes import FakeMedia, FakePeerConnection, FakeSignaling, FakeSink
from palaver.errors import CredentialError, MediaAccessDeniedError, NegotiationError, SessionClosedError
from palaver.services.media import AudioConstraints
from palaver.services.realtime_voice import (
    ControlEvent,
    ControlEventKind,
    RealtimeVoiceSession,
    SessionHandler,
    SessionState,
    SessionStateChanged,
)


def _run(coro):  # noqa: ANN001
    return asyncio.run(coro)


class RecordingHandler(SessionHandler):
    def __init__(self) -> None:
        self.states: list[bool] = []
        self.speaking: list[bool] = []
        self.events: list[ControlEvent] = []

    def on_control_event(self, event: ControlEvent) -> None:
        self.events.append(event)

    def on_state_change(self, connected: bool) -> None:
        self.states.append(connected)

    def on_speaking_change(self, speaking: bool) -> None:
        self.speaking.append(speaking)


class Harness:
    def __init__(self, *, signaling=None, media=None) -> None:  # noqa: ANN001
        self.signaling = signaling or FakeSignaling()
        self.media = media or FakeMedia()
        self.sink = FakeSink()
        self.handler = RecordingHandler()
        self.peers: list[FakePeerConnection] = []
        self.session = RealtimeVoiceSession(
            self.signaling,
            handler=self.handler,
            media=self.media,
            sink=self.sink,
            peer_connection_factory=self._make_peer,
        )

    def _make_peer(self) -> FakePeerConnection:
        peer = FakePeerConnection()
        self.peers.append(peer)
        return peer

    @property
    def peer(self) -> FakePeerConnection:
        return self.peers[0]

    def deliver(self, event: dict) -> None:
        self.peer.channel.emit("message", json.dumps(event))


def test_open_negotiates_and_connects():
    async def scenario():
        h = Harness()
        await h.session.open()
        return h

    h = _run(scenario())
    assert h.session.state is SessionState.CONNECTED
    assert h.session.is_connected and h.session.speaking is False
    assert h.handler.states == [True]
    assert h.signaling.offers == [("v=0 local-offer", "ek_test")]
    assert h.peer.remoteDescription.sdp == "v=0 remote-answer"
    assert h.peer.remoteDescription.type == "answer"
    assert h.peer.tracks == h.media.tracks
    assert h.peer.channel.label == "oai-events"
    assert h.media.constraints == AudioConstraints(
        echo_cancellation=True, noise_suppression=True, auto_gain_control=True
    )


def test_remote_audio_track_is_attached_to_sink():
    async def scenario():
        h = Harness()
        await h.session.open()
        track = type("Track", (), {"kind": "audio"})()
        h.peer.emit("track", track)
        return h, track

    h, track = _run(scenario())
    assert h.sink.attached == [track]


def test_missing_credential_leaves_nothing_allocated():
    async def scenario():
        h = Harness(signaling=FakeSignaling(credential_error=CredentialError("Invalid session token received")))
        with pytest.raises(CredentialError):
            await h.session.open()
        return h

    h = _run(scenario())
    assert h.peers == []
    assert h.media.tracks == []
    assert h.session.state is SessionState.DISCONNECTED
    assert h.handler.states == [False]


def test_negotiation_failure_tears_everything_down():
    async def scenario():
        h = Harness(signaling=FakeSignaling(negotiation_error=NegotiationError("SDP exchange failed: 500", status=500)))
        with pytest.raises(NegotiationError):
            await h.session.open()
        return h

    h = _run(scenario())
    assert all(track.stopped for track in h.media.tracks)
    assert h.peer.channel.readyState == "closed"
    assert h.peer.closed
    assert h.sink.detach_calls == 1
    assert h.session.state is SessionState.DISCONNECTED
    assert h.handler.states == [False]


def test_media_permission_denied_surfaces_distinctly():
    async def scenario():
        h = Harness(media=FakeMedia(error=MediaAccessDeniedError("Microphone access denied")))
        with pytest.raises(MediaAccessDeniedError):
            await h.session.open()
        return h

    h = _run(scenario())
    assert h.peer.closed
    assert h.session.state is SessionState.DISCONNECTED


def test_close_before_open_and_twice_never_raises():
    async def scenario():
        h = Harness()
        await h.session.close()
        await h.session.close()
        with pytest.raises(SessionClosedError):
            await h.session.open()
        return h

    h = _run(scenario())
    assert h.session.state is SessionState.DISCONNECTED
    assert h.session.speaking is None
    assert h.handler.states == [False]


def test_close_while_open_is_in_flight():
    async def scenario():
        gate = asyncio.Event()
        h = Harness(signaling=FakeSignaling(answer_gate=gate))
        opening = asyncio.create_task(h.session.open())
        while not h.signaling.offers:
            await asyncio.sleep(0)
        await h.session.close()
        gate.set()
        with pytest.raises(SessionClosedError):
            await opening
        return h

    h = _run(scenario())
    assert all(track.stopped for track in h.media.tracks)
    assert h.peer.closed
    assert h.session.state is SessionState.DISCONNECTED
    assert h.handler.states == [False]


def test_close_releases_in_order_and_notifies_once():
    async def scenario():
        h = Harness()
        await h.session.open()
        await h.session.close()
        await h.session.close()
        return h

    h = _run(scenario())
    assert h.media.tracks[0].stopped
    assert h.peer.channel.readyState == "closed"
    assert h.peer.closed
    assert h.sink.detach_calls == 2
    assert h.handler.states == [True, False]


def test_speaking_toggles_once_per_delta_done_pair():
    async def scenario():
        h = Harness()
        await h.session.open()
        for _ in range(3):
            h.deliver({"type": "response.audio.delta", "delta": "AAA="})
        assert h.session.speaking is True
        h.deliver({"type": "response.done"})
        h.deliver({"type": "response.audio.delta", "delta": "AAA="})
        h.deliver({"type": "response.audio.done"})
        h.deliver({"type": "response.done"})
        return h

    h = _run(scenario())
    assert h.handler.speaking == [True, False, True, False]
    assert h.session.speaking is False


def test_error_and_unknown_events_are_forwarded_without_transition():
    async def scenario():
        h = Harness()
        await h.session.open()
        h.deliver({"type": "response.audio.delta"})
        h.deliver({"type": "error", "error": {"message": "bad"}})
        h.deliver({"type": "session.updated", "session": {"voice": "alloy"}})
        return h

    h = _run(scenario())
    kinds = [event.kind for event in h.handler.events]
    assert kinds == [ControlEventKind.AUDIO_DELTA, ControlEventKind.ERROR, ControlEventKind.OTHER]
    assert h.handler.events[2].data == {"type": "session.updated", "session": {"voice": "alloy"}}
    assert h.session.speaking is True
    assert h.session.state is SessionState.CONNECTED


def test_undecodable_control_message_is_dropped():
    async def scenario():
        h = Harness()
        await h.session.open()
        h.peer.channel.emit("message", "{not json")
        h.peer.channel.emit("message", "[1, 2]")
        h.peer.channel.emit("message", b'{"type": "response.done"}')
        return h

    h = _run(scenario())
    assert [event.type for event in h.handler.events] == ["response.done"]
    assert h.session.is_connected


def test_remote_close_disconnects_and_releases():
    async def scenario():
        h = Harness()
        await h.session.open()
        h.peer.channel.close()
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        return h

    h = _run(scenario())
    assert h.session.state is SessionState.DISCONNECTED
    assert h.handler.states == [True, False]
    assert h.media.tracks[0].stopped
    assert h.peer.closed


def test_send_text_message_requires_open_channel():
    async def scenario():
        h = Harness()
        with pytest.raises(SessionClosedError):
            h.session.send_text_message("too early")
        await h.session.open()
        h.session.send_text_message("hello")
        return h

    h = _run(scenario())
    sent = [json.loads(raw) for raw in h.peer.channel.sent]
    assert sent[0]["type"] == "conversation.item.create"
    assert sent[0]["item"]["content"] == [{"type": "input_text", "text": "hello"}]
    assert sent[1] == {"type": "response.create"}


def test_events_iterator_yields_in_arrival_order():
    async def scenario():
        h = Harness()
        seen: list[object] = []

        async def consume():
            async for event in h.session.events():
                seen.append(event)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await h.session.open()
        h.deliver({"type": "response.audio.delta"})
        h.deliver({"type": "response.done"})
        await h.session.close()
        await asyncio.wait_for(consumer, timeout=1)
        return seen

    seen = _run(scenario())
    assert seen[0] == SessionStateChanged(SessionState.CONNECTED)
    assert [event.type for event in seen[1:3]] == ["response.audio.delta", "response.done"]
    assert seen[3] == SessionStateChanged(SessionState.DISCONNECTED)
    assert len(seen) == 4


def test_async_context_manager_closes_on_exit():
    async def scenario():
        h = Harness()
        async with h.session as session:
            assert session.is_connected
        return h

    h = _run(scenario())
    assert h.session.state is SessionState.DISCONNECTED
    assert h.media.tracks[0].stopped


def test_events_after_disconnect_end_immediately():
    async def scenario():
        h = Harness()
        await h.session.open()
        consumer = asyncio.create_task(_collect_events(h.session))
        await asyncio.sleep(0)
        await h.session.close()
        first = await asyncio.wait_for(consumer, timeout=1)
        again = await asyncio.wait_for(_collect_events(h.session), timeout=1)
        return first, again

    first, again = _run(scenario())
    assert first == [SessionStateChanged(SessionState.CONNECTED), SessionStateChanged(SessionState.DISCONNECTED)]
    assert again == []


def test_events_started_after_open_begin_with_connected_state():
    async def scenario():
        h = Harness()
        await h.session.open()
        seen: list[object] = []

        async def consume():
            async for event in h.session.events():
                seen.append(event)

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        h.deliver({"type": "response.done"})
        await h.session.close()
        await asyncio.wait_for(consumer, timeout=1)
        return seen

    seen = _run(scenario())
    assert seen[0] == SessionStateChanged(SessionState.CONNECTED)
    assert seen[1].type == "response.done"
    assert seen[-1] == SessionStateChanged(SessionState.DISCONNECTED)


async def _collect_events(session: RealtimeVoiceSession) -> list[object]:
    return [event async for event in session.events()]


def test_close_waits_for_teardown_started_by_remote_close():
    async def scenario():
        h = Harness()
        await h.session.open()
        h.peer.channel.close()
        await h.session.close()
        others = [task for task in asyncio.all_tasks() if task is not asyncio.current_task()]
        return h, others

    h, others = _run(scenario())
    assert others == []
    assert h.peer.closed
    assert h.sink.detach_calls == 2
    assert h.handler.states == [True, False]
