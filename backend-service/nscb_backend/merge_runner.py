from __future__ import annotations

import os
import re
from collections.abc import Mapping
from typing import Any

from .arguments import DEFAULT_MERGE_FORMAT, build_squirrel_merge_args, write_file_list
from .config import DEFAULT_SQUIRREL_EXE_NAME
from .progress import DEFAULT_MATCHERS, PERCENT_RE, ProgressParser, ProgressResult
from .runner import ToolRunner
from .types import Operation, RunOptions, RunSession, StatusEvent
from .utils import display_name, round_percent

TQDM_RE = re.compile(r"(\d+)%\|")
BULLET_RE = re.compile(r"^[\s\-*]+")
APPENDING_RE = re.compile(r"^[\s\-*]*Appending:\s*")
WRITING_SECTIONS = ("partition", "certificate", "game info", "ROOT HFS0")


def match_tqdm(text: str) -> ProgressResult | None:
    match = TQDM_RE.search(text)
    if not match:
        return None
    percent = int(match.group(1))
    # tqdm covers the write phase only; headers come before it and finalization after.
    mapped = round_percent(min(98.0, 10 + percent * 0.88))
    return ProgressResult(mapped, f"Writing output... {percent}%")


class MergeProgressParser(ProgressParser):
    def __init__(self) -> None:
        self.appended_files = 0
        super().__init__(
            stdout_matchers=(self.match_phase, *DEFAULT_MATCHERS),
            stderr_matchers=(match_tqdm, *DEFAULT_MATCHERS),
        )

    def reset(self) -> None:
        super().reset()
        self.appended_files = 0

    def match_phase(self, text: str) -> ProgressResult | None:
        if "Calculating final content" in text:
            return ProgressResult(2.0, "Calculating final content...")
        if text.startswith("Filename:"):
            return ProgressResult(5.0, f"Output: {text[len('Filename:'):].strip()}")
        if "Writing XCI header" in text or "Writing NSP header" in text:
            return ProgressResult(8.0, BULLET_RE.sub("", text))
        if "Writing" in text and any(section in text for section in WRITING_SECTIONS):
            return ProgressResult(10.0, BULLET_RE.sub("", text))
        if "Appending:" in text:
            self.appended_files += 1
            name = display_name(APPENDING_RE.sub("", text).strip())
            # Total is unknown up front; leave headroom for finalization.
            return ProgressResult(min(95.0, 10.0 + self.appended_files * 8), f"Appending: {name}")
        percent = PERCENT_RE.search(text)
        if percent:
            value = min(100.0, float(percent.group(1)))
            return ProgressResult(round_percent(10 + value * 0.85), f"Writing output... {int(value + 0.5)}%")
        return None


class MergeRunner(ToolRunner):
    """Runs squirrel's multi-content merge driven by a temporary input list."""

    name = "merge"
    tool_label = "squirrel"
    default_exe_name = DEFAULT_SQUIRREL_EXE_NAME
    supported_operations = frozenset({Operation.MERGE})
    single_file_operations: frozenset[Operation] = frozenset()
    completion_message = "Merge complete!"

    def merge(self, files: list[str], options: RunOptions | Mapping[str, Any] | None = None) -> None:
        self.run(Operation.MERGE, files, options)

    def create_parser(self) -> MergeProgressParser:
        return MergeProgressParser()

    def process_env(self) -> dict[str, str]:
        env = dict(os.environ)
        env.update(PYTHONIOENCODING="utf-8", PYTHONUTF8="1", PYTHONUNBUFFERED="1")
        return env

    def on_session_started(self, session: RunSession, files: list[str]) -> None:
        op = session.operation.value
        target = (session.options.format or DEFAULT_MERGE_FORMAT).upper()
        self.emit("status", StatusEvent(op, "START", f"Merging {len(files)} files into {target}..."))
        self._emit_progress(op, 0.0, "Calculating final content...")

    def build_args(self, session: RunSession, batch: list[str]) -> list[str]:
        list_path = write_file_list(batch)
        session.temp_files.append(list_path)
        return build_squirrel_merge_args(batch, session.options, list_path=list_path)
