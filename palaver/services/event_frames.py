"""Classification of text-event lines (``data: <json>`` frames)."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Union

from .frame_buffer import FrameBuffer

logger = logging.getLogger(__name__)

COMMENT_MARKER = ":"
PAYLOAD_PREFIX = "data: "
TERMINATION_SENTINEL = "[DONE]"


@dataclass(frozen=True, slots=True)
class Ignore:
    """Blank line, keep-alive comment or a field this client does not read."""


@dataclass(frozen=True, slots=True)
class Terminate:
    """The termination sentinel; nothing after it is parsed."""


@dataclass(frozen=True, slots=True)
class Payload:
    data: Any


@dataclass(frozen=True, slots=True)
class Malformed:
    """A payload line whose JSON did not decode; ``line`` is kept verbatim."""

    line: str


Frame = Union[Ignore, Terminate, Payload, Malformed]

_IGNORE = Ignore()
_TERMINATE = Terminate()


class EventFrameParser:
    """Turns buffered lines into frames.

    A decode failure usually means the frame is not complete yet, so the line
    goes back to the front of the buffer as the pending *candidate* and
    draining stops until more input arrives. A candidate that keeps failing
    (``max_retries`` re-attempts) or grows past ``max_frame_bytes`` is
    discarded so one bad line cannot stall the stream forever.
    """

    def __init__(self, *, max_retries: int = 8, max_frame_bytes: int = 1024 * 1024) -> None:
        self.max_retries = max_retries
        self.max_frame_bytes = max_frame_bytes
        self._candidate: Optional[str] = None
        self._attempts = 0

    @property
    def candidate(self) -> Optional[str]:
        """The line currently held back as an unterminated candidate frame."""

        return self._candidate

    @staticmethod
    def classify(line: str) -> Frame:
        if not line.strip() or line.startswith(COMMENT_MARKER):
            return _IGNORE
        if not line.startswith(PAYLOAD_PREFIX):
            return _IGNORE
        body = line[len(PAYLOAD_PREFIX) :].strip()
        if body == TERMINATION_SENTINEL:
            return _TERMINATE
        try:
            return Payload(json.loads(body))
        except ValueError:
            return Malformed(line)

    def drain(self, buffer: FrameBuffer, *, final: bool = False) -> Iterator[Union[Payload, Terminate]]:
        """Yield every resolvable frame currently in ``buffer``.

        Stops after a ``Terminate`` and whenever a candidate is re-queued. With
        ``final`` (end of stream, no more input coming) nothing is re-queued:
        an unresolved line is dropped and the lines behind it still drain.
        """

        while True:
            line = buffer.next_line()
            if line is None:
                return
            frame = self.classify(line)
            if isinstance(frame, Ignore):
                continue
            if isinstance(frame, Malformed):
                if final:
                    logger.warning("Dropping unresolved frame at end of stream (%d chars)", len(frame.line))
                    self._release()
                elif self._hold(frame.line):
                    buffer.requeue(frame.line)
                    return
                continue
            self._release()
            yield frame
            if isinstance(frame, Terminate):
                return

    def _hold(self, line: str) -> bool:
        if line == self._candidate:
            self._attempts += 1
        else:
            self._candidate = line
            self._attempts = 0

        if self._attempts >= self.max_retries or len(line.encode("utf-8")) > self.max_frame_bytes:
            logger.warning(
                "Discarding malformed frame after %d re-attempts (%d chars)",
                self._attempts,
                len(line),
            )
            self._release()
            return False
        logger.debug("Holding back incomplete frame (attempt %d)", self._attempts)
        return True

    def _release(self) -> None:
        self._candidate = None
        self._attempts = 0


__all__ = [
    "COMMENT_MARKER",
    "EventFrameParser",
    "Frame",
    "Ignore",
    "Malformed",
    "PAYLOAD_PREFIX",
    "Payload",
    "TERMINATION_SENTINEL",
    "Terminate",
]
