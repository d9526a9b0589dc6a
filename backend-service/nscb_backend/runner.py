from __future__ import annotations

import asyncio
import logging
import os
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from .arguments import output_directory, remove_file_list
from .batching import SINGLE_FILE_OPERATIONS, batch_header, plan_batches
from .config import Settings
from .errors import ConcurrencyViolation, ConfigurationError, LaunchFailure, ProtocolError, RunnerError, ToolFailure
from .events import EventEmitter
from .integrations import executable_path, has_executable
from .monitor import FileSizeMonitor
from .progress import DONE_MESSAGE, ErrorResult, ParseResult, ProgressParser, ProgressResult, StatusResult
from .streams import LineReassembler
from .types import (
    CancelledEvent,
    DoneEvent,
    ErrorEvent,
    LogEvent,
    Operation,
    OutputEvent,
    ProgressEvent,
    RunOptions,
    RunSession,
    SessionState,
    StatusEvent,
)
from .utils import display_name

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096
MAX_PENDING_STDERR_CHARS = 4096


def _op_name(operation: Operation | str) -> str:
    return operation.value if isinstance(operation, Operation) else str(operation)


def _spawn_options() -> dict[str, Any]:
    if os.name == "nt":
        return {"creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0)}
    return {}


class ToolRunner(EventEmitter):
    """Supervises one external tool process at a time and publishes its telemetry.

    Subclasses describe a tool family: executable name, supported operations,
    argument construction and parser flavor. Everything else (batching,
    stream reassembly, cancellation, completion events) lives here.

    Session states move ``starting -> running -> succeeded | failed`` or
    ``running -> cancelling -> killed``. Only one session exists per runner; the
    session, its process handle and its timers are touched only from the event
    loop thread.
    """

    name = "tool"
    tool_label = "tool"
    default_exe_name = ""
    supported_operations: frozenset[Operation] = frozenset(Operation)
    single_file_operations: frozenset[Operation] = SINGLE_FILE_OPERATIONS
    completion_message = DONE_MESSAGE

    def __init__(
        self,
        tools_dir: str | Path | None = None,
        *,
        settings: Settings | None = None,
        exe_name: str | None = None,
    ) -> None:
        super().__init__()
        self.settings = settings or Settings()
        self.exe_name = exe_name or self.default_exe_name
        self.tools_dir: Path | None = Path(tools_dir).expanduser() if tools_dir else None
        self._session: RunSession | None = None

    @classmethod
    def validate_tools_directory(cls, dir_path: str | Path, exe_name: str | None = None) -> bool:
        return has_executable(dir_path, exe_name or cls.default_exe_name)

    def set_tools_directory(self, dir_path: str | Path | None) -> None:
        self.tools_dir = Path(dir_path).expanduser() if dir_path else None

    @property
    def exe_path(self) -> Path | None:
        return executable_path(self.tools_dir, self.exe_name)

    @property
    def current_operation(self) -> str | None:
        session = self._session
        return session.operation.value if session else None

    @property
    def state(self) -> SessionState:
        session = self._session
        return session.state if session else SessionState.IDLE

    def is_running(self) -> bool:
        return self._session is not None

    def status_view(self) -> dict[str, Any]:
        session = self._session
        return {
            "runner": self.name,
            "running": session is not None,
            "operation": session.operation.value if session else None,
            "state": self.state.value,
            "batch_index": session.batch_index if session else None,
            "batch_count": session.batch_count if session else None,
            "tools_dir": str(self.tools_dir) if self.tools_dir else None,
        }

    # -- hooks ---------------------------------------------------------------

    def build_args(self, session: RunSession, batch: list[str]) -> list[str]:
        raise NotImplementedError

    def create_parser(self) -> ProgressParser:
        return ProgressParser()

    def process_env(self) -> dict[str, str] | None:
        return None

    def on_session_started(self, session: RunSession, files: list[str]) -> None:
        return None

    # -- public operations ---------------------------------------------------

    def run(
        self,
        operation: Operation | str,
        files: list[str],
        options: RunOptions | Mapping[str, Any] | None = None,
    ) -> None:
        """Start ``operation`` on ``files``; results arrive only as events.

        Precondition: no session is active on this runner. A call made while one
        is active emits a single ``error`` event naming the running operation and
        leaves that session untouched. Must be called on the event loop thread.
        """
        active = self._session
        if active is not None:
            logger.warning("Run rejected runner=%s running=%s requested=%s", self.name, active.operation.value, _op_name(operation))
            self._emit_error(_op_name(operation), str(ConcurrencyViolation(active.operation.value)))
            return

        op_name = _op_name(operation)
        try:
            op = self._coerce_operation(operation)
            exe_path = self._require_executable_path()
            file_list = self._require_files(files)
            run_options = RunOptions.coerce(options)
        except RunnerError as exc:
            logger.warning("Run rejected runner=%s operation=%s reason=%s", self.name, op_name, exc)
            self._emit_error(op_name, str(exc))
            return

        loop = asyncio.get_running_loop()
        parser = self.create_parser()
        parser.reset()
        session = RunSession(
            operation=op,
            batches=plan_batches(op, file_list, self.single_file_operations),
            options=run_options,
            parser=parser,
            loop=loop,
        )
        self._session = session
        logger.info(
            "Run started runner=%s operation=%s files=%s batches=%s",
            self.name,
            op.value,
            len(file_list),
            session.batch_count,
        )
        self.on_session_started(session, file_list)
        session.task = loop.create_task(self._execute(session, exe_path))

    def cancel(self) -> None:
        session = self._session
        if session is None or session.cancelled:
            return

        session.cancelled = True
        session.state = SessionState.CANCELLING
        logger.info("Cancelling run runner=%s operation=%s", self.name, session.operation.value)
        self._stop_monitor(session)
        if session.process is not None:
            self._terminate(session, session.process)
        self._cleanup_temp_files(session)

    async def shutdown(self) -> None:
        session = self._session
        if session is None:
            return
        self.cancel()
        if session.task is None:
            return
        try:
            await asyncio.wait_for(asyncio.shield(session.task), timeout=self.settings.cancel_grace_seconds + 2)
        except asyncio.TimeoutError:
            logger.warning("Runner did not stop in time runner=%s", self.name)

    # -- supervision ---------------------------------------------------------

    def _coerce_operation(self, operation: Operation | str) -> Operation:
        try:
            op = Operation(operation)
        except ValueError:
            raise RunnerError(f"Unsupported operation: {operation}") from None
        if op not in self.supported_operations:
            raise RunnerError(f"Operation '{op.value}' is not supported by {self.tool_label}")
        return op

    def _require_executable_path(self) -> Path:
        exe_path = self.exe_path
        if exe_path is None:
            raise ConfigurationError(f"{self.exe_name} path not configured. Please set the tools directory in Settings.")
        return exe_path

    def _require_files(self, files: list[str]) -> list[str]:
        file_list = [str(item) for item in files or [] if str(item).strip()]
        if not file_list:
            raise RunnerError("No input files were provided")
        return file_list

    async def _execute(self, session: RunSession, exe_path: Path) -> None:
        op = session.operation.value
        code: int | None
        try:
            code = await self._run_batches(session, exe_path)
        except Exception as exc:
            logger.exception("Run crashed runner=%s operation=%s", self.name, op)
            session.error_message = f"{self.tool_label} run failed: {exc}"
            code = None
        finally:
            self._release(session)

        if session.cancelled:
            session.state = SessionState.KILLED
            logger.info("Run cancelled runner=%s operation=%s", self.name, op)
            self.emit("cancelled", CancelledEvent(op))
            return

        if code is None:
            session.state = SessionState.FAILED
            self._emit_error(op, session.error_message or f"{self.tool_label} failed")
            return

        if code != 0:
            session.state = SessionState.FAILED
            logger.warning("Run failed runner=%s operation=%s exit_code=%s", self.name, op, code)
            self._emit_error(op, str(ToolFailure(self.tool_label, code, session.last_output_line)))
            self.emit("done", DoneEvent(op, code))
            return

        session.state = SessionState.SUCCEEDED
        logger.info("Run finished runner=%s operation=%s", self.name, op)
        self._emit_progress(op, 100.0, self.completion_message)
        self.emit("done", DoneEvent(op, 0))

    async def _run_batches(self, session: RunSession, exe_path: Path) -> int | None:
        total = session.batch_count
        for index, batch in enumerate(session.batches):
            if session.cancelled:
                return None
            session.batch_index = index
            session.state = SessionState.STARTING
            session.parser.start_batch()
            if total > 1:
                self._emit_output(session, batch_header(index, total, display_name(batch[0])))

            args = self.build_args(session, batch)
            code = await self._run_process(session, exe_path, args)
            self._cleanup_temp_files(session)
            if code != 0 or session.cancelled:
                return code
        return 0

    async def _run_process(self, session: RunSession, exe_path: Path, args: list[str]) -> int | None:
        command_line = " ".join([str(exe_path), *args])
        self.emit("log", LogEvent(f"Running: {command_line}"))
        self._emit_output(session, f"> {command_line}")
        session.last_output_line = ""

        try:
            process = await asyncio.create_subprocess_exec(
                str(exe_path),
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(exe_path.parent),
                env=self.process_env(),
                **_spawn_options(),
            )
        except OSError as exc:
            logger.warning("Launch failed runner=%s exe=%s error=%s", self.name, exe_path, exc)
            session.error_message = str(LaunchFailure(self.tool_label, exc))
            return None

        session.process = process
        if session.cancelled:
            # cancel() arrived while the process was being spawned.
            self._terminate(session, process)
        else:
            session.state = SessionState.RUNNING
        logger.info(
            "Process started runner=%s pid=%s batch=%s/%s",
            self.name,
            process.pid,
            session.batch_index + 1,
            session.batch_count,
        )

        try:
            await asyncio.gather(
                self._pump_stdout(session, process.stdout),
                self._pump_stderr(session, process.stderr),
            )
            code = await process.wait()
        finally:
            session.process = None
            self._stop_monitor(session)

        logger.info("Process exited runner=%s pid=%s exit_code=%s", self.name, process.pid, code)
        return code

    async def _pump_stdout(self, session: RunSession, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        reassembler = LineReassembler()
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in reassembler.feed(chunk):
                self._handle_stdout_line(session, line)
        for line in reassembler.flush():
            self._handle_stdout_line(session, line)

    async def _pump_stderr(self, session: RunSession, stream: asyncio.StreamReader | None) -> None:
        if stream is None:
            return
        reassembler = LineReassembler(max_pending=MAX_PENDING_STDERR_CHARS)
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in reassembler.feed(chunk):
                self._handle_stderr_line(session, line)
            # indicatif redraws without line terminators; a whitespace-terminated
            # tail holds complete tokens.
            tail = reassembler.pending
            if tail[-1:].isspace() and not session.cancelled:
                peeked = session.parser.peek_progress(tail)
                if peeked is not None:
                    session.last_output_line = tail.strip()
                    self._dispatch(session, peeked, stream="stderr")
        for line in reassembler.flush():
            self._handle_stderr_line(session, line)

    def _handle_stdout_line(self, session: RunSession, line: str) -> None:
        if session.cancelled:
            return
        session.last_output_line = line
        self._dispatch(session, session.parser.parse_line(line), stream="stdout")
        self._check_output_announcement(session)

    def _handle_stderr_line(self, session: RunSession, line: str) -> None:
        if session.cancelled:
            return
        session.last_output_line = line
        self._dispatch(session, session.parser.parse_stderr(line), stream="stderr")
        self._check_output_announcement(session)

    def _dispatch(self, session: RunSession, result: ParseResult, *, stream: str) -> None:
        op = session.operation.value
        if isinstance(result, ProgressResult):
            self._emit_progress(op, result.percent, result.message)
            if result.percent >= 100:
                self._stop_monitor(session)
        elif isinstance(result, StatusResult):
            self.emit("status", StatusEvent(op, result.action, result.detail))
        elif isinstance(result, ErrorResult):
            self._emit_error(op, str(ProtocolError(result.message)))
        elif stream == "stdout":
            self.emit("output", OutputEvent(op, result.text))
        else:
            self.emit("log", LogEvent(f"[stderr] {result.text}"))

    def _check_output_announcement(self, session: RunSession) -> None:
        announced = session.parser.take_output_announcement()
        if not announced or session.monitor is not None:
            return
        expected = session.parser.expected_size.total_bytes
        if expected <= 0:
            return

        target = Path(announced)
        if not target.is_absolute():
            base = output_directory(session.batches[session.batch_index], session.options)
            target = Path(base or ".") / target

        session.monitor = FileSizeMonitor(
            path=target,
            expected_bytes=expected,
            on_progress=lambda percent, message: self._on_monitor_progress(session, percent, message),
            interval_seconds=self.settings.monitor_interval_seconds,
            settle_seconds=self.settings.monitor_settle_seconds,
        )
        session.monitor.start()

    def _on_monitor_progress(self, session: RunSession, percent: float, message: str) -> None:
        if session.cancelled or self._session is not session:
            return
        self._emit_progress(session.operation.value, percent, message)

    def _terminate(self, session: RunSession, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        session.kill_handle = session.loop.call_later(
            self.settings.cancel_grace_seconds,
            self._force_kill,
            process,
        )

    def _force_kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        logger.warning("Process ignored termination; killing runner=%s pid=%s", self.name, process.pid)
        try:
            process.kill()
        except ProcessLookupError:
            pass

    def _stop_monitor(self, session: RunSession) -> None:
        if session.monitor is not None:
            session.monitor.stop()
            session.monitor = None

    def _cleanup_temp_files(self, session: RunSession) -> None:
        session.temp_files = [path for path in session.temp_files if not remove_file_list(path)]

    def _release(self, session: RunSession) -> None:
        self._stop_monitor(session)
        if session.kill_handle is not None:
            session.kill_handle.cancel()
            session.kill_handle = None
        self._cleanup_temp_files(session)
        if self._session is session:
            self._session = None

    # -- emission ------------------------------------------------------------

    def _emit_progress(self, op: str, percent: float, message: str) -> None:
        self.emit("progress", ProgressEvent(op, percent, message))

    def _emit_output(self, session: RunSession, line: str) -> None:
        if not session.cancelled:
            self.emit("output", OutputEvent(session.operation.value, line))

    def _emit_error(self, op: str, message: str) -> None:
        self.emit("error", ErrorEvent(op, message))
