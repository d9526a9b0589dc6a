from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path

from .utils import round_percent

logger = logging.getLogger(__name__)


class ExpectedSizeTracker:
    def __init__(self) -> None:
        self.total_bytes = 0

    def add(self, size: int) -> None:
        if size > 0:
            self.total_bytes += size

    def reset(self) -> None:
        self.total_bytes = 0


class FileSizeMonitor:
    """Synthesizes progress for silent tools by polling the growing output file."""

    def __init__(
        self,
        *,
        path: Path,
        expected_bytes: int,
        on_progress: Callable[[float, str], None],
        interval_seconds: float = 0.5,
        settle_seconds: float = 1.0,
    ):
        self.path = path
        self.expected_bytes = max(1, expected_bytes)
        self.on_progress = on_progress
        self.interval_seconds = max(0.05, interval_seconds)
        self.settle_seconds = max(0.0, settle_seconds)
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            return
        logger.info("File-size monitor started path=%s expected_bytes=%s", self.path, self.expected_bytes)
        self._task = asyncio.create_task(self._poll_loop())

    def stop(self) -> None:
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def _poll_loop(self) -> None:
        try:
            await asyncio.sleep(self.settle_seconds)
            while True:
                size = self._current_size()
                if size is not None:
                    percent = round_percent(min(99.0, size / self.expected_bytes * 100))
                    self.on_progress(percent, f"Writing output... {percent:g}%")
                await asyncio.sleep(self.interval_seconds)
        except asyncio.CancelledError:
            return

    def _current_size(self) -> int | None:
        # Not created yet or locked by the writer; try again next tick.
        try:
            return self.path.stat().st_size
        except OSError:
            return None
