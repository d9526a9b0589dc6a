from __future__ import annotations

import codecs
import re
from collections.abc import Callable

LINE_BREAK_RE = re.compile(r"[\r\n]+")
CSI_RE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
OSC_RE = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")
# C0 controls other than tab, LF, CR and ESC; ESC may start a sequence still in flight.
CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1a\x1c-\x1f\x7f]")


def strip_control_sequences(text: str, *, partial: bool = False) -> str:
    """Remove ANSI cursor/color codes, terminal title sets and stray control bytes.

    With ``partial`` an unterminated escape at the end of ``text`` is kept so the
    next chunk can complete it.
    """
    cleaned = OSC_RE.sub("", CSI_RE.sub("", text))
    cleaned = CONTROL_RE.sub(" ", cleaned)
    if not partial:
        cleaned = cleaned.replace("\x1b", "")
    return cleaned


class LineReassembler:
    """Turns arbitrary byte chunks into complete lines.

    Lines end at any run of CR/LF characters, so in-place progress redraws that
    only use carriage returns still produce one line per redraw. The trailing
    incomplete segment is carried over to the next chunk.
    """

    def __init__(
        self,
        *,
        clean: Callable[..., str] | None = strip_control_sequences,
        max_pending: int | None = None,
    ) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._clean = clean
        self._max_pending = max_pending
        self._buffer = ""

    @property
    def pending(self) -> str:
        return self._buffer

    def feed(self, chunk: bytes | str) -> list[str]:
        text = self._decoder.decode(chunk) if isinstance(chunk, bytes) else chunk
        buffer = self._buffer + text
        if self._clean is not None:
            buffer = self._clean(buffer, partial=True)

        segments = LINE_BREAK_RE.split(buffer)
        tail = segments.pop()
        if self._max_pending is not None and len(tail) > self._max_pending:
            tail = tail[-self._max_pending:]
        self._buffer = tail
        return self._finish(segments)

    def flush(self) -> list[str]:
        remainder = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        return self._finish(LINE_BREAK_RE.split(remainder))

    def _finish(self, segments: list[str]) -> list[str]:
        lines: list[str] = []
        for segment in segments:
            if self._clean is not None:
                segment = self._clean(segment)
            trimmed = segment.strip()
            if trimmed:
                lines.append(trimmed)
        return lines
