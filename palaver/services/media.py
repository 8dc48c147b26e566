"""Local microphone capture and remote audio playback for the voice session."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Optional, Sequence, Union

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole, MediaPlayer, MediaRecorder
from av import AudioFrame
from av.filter import Graph

from ..config import settings
from ..errors import MediaAccessDeniedError

logger = logging.getLogger(__name__)

NOISE_SUPPRESSION_FILTER = "afftdn"
GAIN_CONTROL_FILTER = "speechnorm"


@dataclass(frozen=True, slots=True)
class AudioConstraints:
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True


def audio_filters(constraints: AudioConstraints) -> list[str]:
    """ffmpeg audio filters implementing the enabled processing, in chain order."""

    filters = []
    if constraints.noise_suppression:
        filters.append(NOISE_SUPPRESSION_FILTER)
    if constraints.auto_gain_control:
        filters.append(GAIN_CONTROL_FILTER)
    return filters


def build_filter_graph(template: AudioFrame, filters: Sequence[str]) -> Graph:
    """Chain ``abuffer -> filters... -> abuffersink`` for frames shaped like ``template``."""

    graph = Graph()
    node = graph.add_abuffer(template=template)
    for spec in filters:
        name, _, args = spec.partition("=")
        nxt = graph.add(name, args or None)
        node.link_to(nxt)
        node = nxt
    sink = graph.add("abuffersink")
    node.link_to(sink)
    graph.configure()
    return graph


class ProcessedAudioTrack(MediaStreamTrack):
    """Runs every frame of ``source`` through an ffmpeg filter chain."""

    kind = "audio"

    def __init__(self, source: MediaStreamTrack, filters: Sequence[str]) -> None:
        super().__init__()
        self.source = source
        self.filters = list(filters)
        self._graph: Optional[Graph] = None

    async def recv(self) -> AudioFrame:
        while True:
            if self._graph is not None:
                try:
                    return self._graph.pull()
                except BlockingIOError:
                    # the chain needs more input before it emits a frame
                    pass
            frame = await self.source.recv()
            if self._graph is None:
                self._graph = build_filter_graph(frame, self.filters)
            self._graph.push(frame)

    def stop(self) -> None:
        super().stop()
        self.source.stop()


def _release_player(player: MediaPlayer) -> None:
    tracks = [track for track in (player.audio, player.video) if track is not None]
    for track in tracks:
        track.stop()
    if not tracks:
        # no track to stop; closes the input container directly
        player._stop(None)


class MicrophoneCapture:
    """Opens the configured input device through ffmpeg and returns its audio tracks.

    Noise suppression and gain control run as ffmpeg filters on the captured
    frames. Echo cancellation needs the far-end signal, so it is delegated to
    the platform: with ``echo_cancellation`` on, the echo-cancelled source
    (for example PulseAudio ``module-echo-cancel``) is opened instead of the
    raw device when one is configured.
    """

    def __init__(
        self,
        *,
        device: Optional[str] = None,
        format: Optional[str] = None,
        echo_cancel_device: Optional[str] = None,
    ) -> None:
        self._device = device or settings.audio_input_device
        self._format = format if format is not None else settings.audio_input_format
        self._echo_cancel_device = echo_cancel_device or settings.audio_echo_cancel_device

    def device_for(self, constraints: AudioConstraints) -> str:
        if constraints.echo_cancellation:
            if self._echo_cancel_device:
                return self._echo_cancel_device
            logger.warning("Echo cancellation requested but AUDIO_ECHO_CANCEL_DEVICE is not set")
        return self._device

    async def get_user_media(self, constraints: AudioConstraints) -> list[MediaStreamTrack]:
        device = self.device_for(constraints)
        logger.debug("Opening audio input %s (%s) with %s", device, self._format, asdict(constraints))
        try:
            player = await asyncio.to_thread(MediaPlayer, device, format=self._format)
        except PermissionError as exc:
            raise MediaAccessDeniedError(f"Microphone access denied for {device}") from exc

        if player.audio is None:
            _release_player(player)
            raise RuntimeError(f"Audio input {device} exposes no audio stream")

        filters = audio_filters(constraints)
        if not filters:
            return [player.audio]
        return [ProcessedAudioTrack(player.audio, filters)]


class RemoteAudioSink:
    """Plays (or drains) the remote model's audio track.

    With no output device configured the track is consumed by a blackhole so
    the peer connection keeps flowing.
    """

    def __init__(self, *, device: Optional[str] = None, format: Optional[str] = None) -> None:
        self._device = device if device is not None else settings.audio_output_device
        self._format = format if format is not None else settings.audio_output_format
        self._recorder: Optional[Union[MediaRecorder, MediaBlackhole]] = None
        self._starting: Optional[asyncio.Future] = None

    @property
    def attached(self) -> bool:
        return self._recorder is not None

    def attach(self, track: MediaStreamTrack) -> None:
        if self._recorder is not None:
            logger.debug("Remote audio already attached; ignoring extra %s track", track.kind)
            return
        if self._device:
            self._recorder = MediaRecorder(self._device, format=self._format)
        else:
            self._recorder = MediaBlackhole()
        self._recorder.addTrack(track)
        self._starting = asyncio.ensure_future(self._recorder.start())

    async def detach(self) -> None:
        recorder, self._recorder = self._recorder, None
        starting, self._starting = self._starting, None
        if recorder is None:
            return
        if starting is not None and not starting.done():
            starting.cancel()
        await recorder.stop()
