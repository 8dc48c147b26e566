"""Line reassembly for a chunked text-event stream."""
from __future__ import annotations

import codecs
from typing import Optional, Union


class FrameBuffer:
    """Accumulate decoded text and hand back complete lines.

    Chunks may split a multi-byte character or a protocol line anywhere; the
    incremental decoder holds partial characters back until the next chunk.
    Unterminated input is kept indefinitely.
    """

    def __init__(self, encoding: str = "utf-8") -> None:
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._text = ""

    def __len__(self) -> int:
        return len(self._text)

    @property
    def pending(self) -> str:
        """Text not yet resolved into a complete line."""

        return self._text

    def append(self, chunk: Union[bytes, str]) -> None:
        if isinstance(chunk, str):
            self._text += chunk
            return
        self._text += self._decoder.decode(chunk)

    def finish(self) -> None:
        """Flush any bytes the decoder is still holding at end-of-stream."""

        self._text += self._decoder.decode(b"", final=True)

    def next_line(self) -> Optional[str]:
        index = self._text.find("\n")
        if index == -1:
            return None
        line = self._text[:index]
        self._text = self._text[index + 1 :]
        if line.endswith("\r"):
            line = line[:-1]
        return line

    def requeue(self, line: str) -> None:
        """Put an unresolved line back in front of everything buffered after it."""

        self._text = f"{line}\n{self._text}"

    def clear(self) -> None:
        self._text = ""
        self._decoder.reset()
