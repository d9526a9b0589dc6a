from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .monitor import FileSizeMonitor
    from .progress import ProgressParser


class Operation(str, Enum):
    COMPRESS = "compress"
    DECOMPRESS = "decompress"
    MERGE = "merge"
    CONVERT = "convert"
    SPLIT = "split"
    CREATE = "create"
    TRIM = "trim"


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLING = "cancelling"
    KILLED = "killed"


@dataclass(slots=True, frozen=True)
class RunOptions:
    output: str | None = None
    level: int | None = None
    format: str | None = None
    nodelta: bool = False
    buffer: int | None = None
    trim_mode: str | None = None

    @classmethod
    def coerce(cls, value: RunOptions | Mapping[str, Any] | None) -> RunOptions:
        """Accept a loose mapping from callers; unknown and null keys are dropped."""
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        known = {f.name for f in fields(cls)}
        return cls(**{key: item for key, item in value.items() if key in known and item is not None})


@dataclass(slots=True, frozen=True)
class ProgressEvent:
    op: str
    percent: float
    message: str


@dataclass(slots=True, frozen=True)
class OutputEvent:
    op: str
    line: str


@dataclass(slots=True, frozen=True)
class StatusEvent:
    op: str
    action: str
    detail: str


@dataclass(slots=True, frozen=True)
class DoneEvent:
    op: str
    code: int


@dataclass(slots=True, frozen=True)
class ErrorEvent:
    op: str
    message: str


@dataclass(slots=True, frozen=True)
class LogEvent:
    message: str


@dataclass(slots=True, frozen=True)
class CancelledEvent:
    op: str


@dataclass(slots=True)
class RunSession:
    operation: Operation
    batches: list[list[str]]
    options: RunOptions
    parser: ProgressParser
    loop: asyncio.AbstractEventLoop
    state: SessionState = SessionState.STARTING
    batch_index: int = 0
    cancelled: bool = False
    process: asyncio.subprocess.Process | None = None
    task: asyncio.Task[None] | None = None
    kill_handle: asyncio.TimerHandle | None = None
    monitor: FileSizeMonitor | None = None
    temp_files: list[Path] = field(default_factory=list)
    last_output_line: str = ""
    error_message: str | None = None

    @property
    def batch_count(self) -> int:
        return len(self.batches)
