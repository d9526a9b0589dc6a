from __future__ import annotations


class RunnerError(Exception):
    pass


class ConfigurationError(RunnerError):
    pass


class ConcurrencyViolation(RunnerError):
    def __init__(self, running_operation: str):
        super().__init__(f"A process is already running ({running_operation})")
        self.running_operation = running_operation


class LaunchFailure(RunnerError):
    def __init__(self, tool: str, reason: object):
        super().__init__(f"Failed to start {tool}: {reason}")
        self.tool = tool


class ToolFailure(RunnerError):
    def __init__(self, tool: str, code: int, last_line: str = ""):
        message = f"{tool} exited with code {code}"
        if last_line:
            message = f"{message}: {last_line}"
        super().__init__(message)
        self.tool = tool
        self.code = code


class ProtocolError(RunnerError):
    """Error sentinel printed by the tool; the exit code stays authoritative."""
