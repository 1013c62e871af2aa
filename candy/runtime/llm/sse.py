from __future__ import annotations

import codecs
import re
from dataclasses import dataclass

DONE_SENTINEL = "[DONE]"

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


@dataclass(frozen=True, slots=True)
class SseFrame:
    data: str
    event: str | None = None

    @property
    def is_done(self) -> bool:
        return self.data.strip() == DONE_SENTINEL


class SseLineBuffer:
    """
    Incremental SSE framer.

    Lines may end in LF, CRLF or a bare CR. Network chunks can end anywhere: mid-line,
    mid-`data:` prefix, between the CR and LF of one line break, or in the middle of a
    multi-byte UTF-8 character. Only complete lines are interpreted; the remainder is kept
    for the next `feed()`.

    Each `data:` line is surfaced as its own frame (vendors in scope emit one JSON object per
    data line). The most recent `event:` name is attached and reset on a blank line.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = ""
        self._event: str | None = None

    def feed(self, chunk: bytes) -> list[SseFrame]:
        self._pending += self._decoder.decode(chunk)
        return self._drain(final=False)

    def close(self) -> list[SseFrame]:
        self._pending += self._decoder.decode(b"", final=True)
        return self._drain(final=True)

    def _drain(self, *, final: bool) -> list[SseFrame]:
        frames: list[SseFrame] = []
        text = self._pending
        held = ""
        # A trailing CR may be the first half of a CRLF split across chunks.
        if not final and text.endswith("\r"):
            text, held = text[:-1], "\r"
        lines = _LINE_BREAK.split(text)
        self._pending = "" if final else lines.pop() + held
        for line in lines:
            frame = self._interpret(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def _interpret(self, line: str) -> SseFrame | None:
        if not line.strip():
            self._event = None
            return None
        if line.startswith(":"):
            return None
        if line.startswith("event:"):
            self._event = line[len("event:") :].strip() or None
            return None
        if line.startswith("data:"):
            return SseFrame(data=line[len("data:") :].lstrip(), event=self._event)
        return None
