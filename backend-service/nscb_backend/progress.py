"""Classification of free-form tool output into normalized telemetry.

Each matcher inspects one line (or one cleaned stderr tail) and either returns
a tagged result or ``None``. :func:`classify` evaluates matchers in order and
stops at the first hit, so precedence is the order of the matcher tuple:

1. error sentinel
2. literal percentage
3. bracketed status tag
4. byte ratio (last match, capped at 99)
5. item ratio (last match, capped at 99)
6. ``Done!`` sentinel (100)

Ratios come from a tool that is still running; only its own completion
sentinel may report 100.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from .monitor import ExpectedSizeTracker
from .utils import round_percent

ERROR_PREFIX_RE = re.compile(r"error:\s*(.+?)(?:\s{2,}|$)", flags=re.IGNORECASE)
ERROR_WORD_RE = re.compile(r"error|traceback", flags=re.IGNORECASE)
PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s*%")
STATUS_RE = re.compile(r"^\[(\w+)(?:\s+[^\]]*)?\]\s*(.*)")
BYTE_UNITS = {
    "B": 1,
    "KiB": 1024,
    "MiB": 1024**2,
    "GiB": 1024**3,
    "TiB": 1024**4,
    "KB": 1000,
    "MB": 1000**2,
    "GB": 1000**3,
    "TB": 1000**4,
}
_UNIT = r"(KiB|MiB|GiB|TiB|KB|MB|GB|TB|B)\b"
BYTE_RATIO_RE = re.compile(rf"(\d+(?:\.\d+)?)\s*{_UNIT}\s*/\s*(\d+(?:\.\d+)?)\s*{_UNIT}")
ITEM_RATIO_RE = re.compile(r"(\d+)\s*/\s*(\d+)")
LABEL_RE = re.compile(r"([A-Z][a-z]+(?:\s+\w+)*)\s*\[")
EXPECTED_BYTES_RE = re.compile(
    r"\b(?:add|adding|append|appending|write|writing)\b[^\r\n]*?\b(\d+)\s*bytes\b",
    flags=re.IGNORECASE,
)
OUTPUT_PATH_RE = re.compile(r"^\s*(?:Filename|Output file)\s*:\s*(.+?)\s*$", flags=re.IGNORECASE)
DEFAULT_LABEL = "Processing"
DONE_MESSAGE = "Done!"


@dataclass(slots=True, frozen=True)
class ProgressResult:
    percent: float
    message: str


@dataclass(slots=True, frozen=True)
class StatusResult:
    action: str
    detail: str


@dataclass(slots=True, frozen=True)
class ErrorResult:
    message: str


@dataclass(slots=True, frozen=True)
class RawResult:
    text: str


ParseResult = ProgressResult | StatusResult | ErrorResult | RawResult
Matcher = Callable[[str], "ParseResult | None"]


def _last_match(pattern: re.Pattern[str], text: str) -> re.Match[str] | None:
    last = None
    for last in pattern.finditer(text):
        pass
    return last


def has_done_sentinel(text: str) -> bool:
    return "Done!" in text or "done!" in text


def extract_label(text: str) -> str:
    match = LABEL_RE.search(text)
    return match.group(1) if match else DEFAULT_LABEL


def match_error(text: str) -> ErrorResult | None:
    prefixed = ERROR_PREFIX_RE.search(text)
    if prefixed:
        return ErrorResult(prefixed.group(1).strip())
    if ERROR_WORD_RE.search(text):
        return ErrorResult(text.strip())
    return None


def match_percent(text: str) -> ProgressResult | None:
    match = PERCENT_RE.search(text)
    if not match:
        return None
    return ProgressResult(min(100.0, float(match.group(1))), text)


def match_status(text: str) -> StatusResult | None:
    match = STATUS_RE.match(text)
    if not match:
        return None
    return StatusResult(match.group(1), match.group(2))


def match_byte_ratio(text: str) -> ProgressResult | None:
    if has_done_sentinel(text):
        return None
    match = _last_match(BYTE_RATIO_RE, text)
    if match is None:
        return None
    current = float(match.group(1)) * BYTE_UNITS[match.group(2)]
    total = float(match.group(3)) * BYTE_UNITS[match.group(4)]
    if total <= 0:
        return None
    percent = round_percent(min(99.0, current / total * 100))
    message = f"{extract_label(text)}... {match.group(1)} {match.group(2)} / {match.group(3)} {match.group(4)}"
    return ProgressResult(percent, message)


def match_item_ratio(text: str) -> ProgressResult | None:
    if has_done_sentinel(text):
        return None
    match = _last_match(ITEM_RATIO_RE, text)
    if match is None:
        return None
    pos = int(match.group(1))
    length = int(match.group(2))
    if length <= 0 or pos > length:
        return None
    percent = round_percent(min(99.0, pos / length * 100))
    return ProgressResult(percent, f"{extract_label(text)}... {pos} / {length}")


def match_done(text: str) -> ProgressResult | None:
    if has_done_sentinel(text):
        return ProgressResult(100.0, DONE_MESSAGE)
    return None


DEFAULT_MATCHERS: tuple[Matcher, ...] = (
    match_error,
    match_percent,
    match_status,
    match_byte_ratio,
    match_item_ratio,
    match_done,
)


def classify(text: str, matchers: Sequence[Matcher] = DEFAULT_MATCHERS) -> ParseResult:
    for matcher in matchers:
        result = matcher(text)
        if result is not None:
            return result
    return RawResult(text)


def match_expected_bytes(text: str) -> int | None:
    match = EXPECTED_BYTES_RE.search(text)
    return int(match.group(1)) if match else None


def match_output_path(text: str) -> str | None:
    match = OUTPUT_PATH_RE.match(text)
    return match.group(1) if match else None


class ProgressParser:
    """Per-run parser state: matcher order per stream plus size announcements."""

    def __init__(
        self,
        *,
        stdout_matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
        stderr_matchers: Sequence[Matcher] = DEFAULT_MATCHERS,
    ) -> None:
        self.stdout_matchers = tuple(stdout_matchers)
        self.stderr_matchers = tuple(stderr_matchers)
        self.expected_size = ExpectedSizeTracker()
        self._output_announcement: str | None = None

    def reset(self) -> None:
        self.start_batch()

    def start_batch(self) -> None:
        """Drop size announcements; they describe a single batch's output file."""
        self.expected_size.reset()
        self._output_announcement = None

    def parse_line(self, text: str) -> ParseResult:
        self._observe(text)
        return classify(text, self.stdout_matchers)

    def parse_stderr(self, text: str) -> ParseResult:
        self._observe(text)
        return classify(text, self.stderr_matchers)

    def peek_progress(self, text: str) -> ProgressResult | None:
        """Progress carried by an unterminated stderr tail, without consuming it."""
        result = classify(text, self.stderr_matchers)
        if isinstance(result, ProgressResult) and result.percent < 100:
            return result
        return None

    def take_output_announcement(self) -> str | None:
        announced = self._output_announcement
        self._output_announcement = None
        return announced

    def _observe(self, text: str) -> None:
        size = match_expected_bytes(text)
        if size:
            self.expected_size.add(size)
        path = match_output_path(text)
        if path:
            self._output_announcement = path
