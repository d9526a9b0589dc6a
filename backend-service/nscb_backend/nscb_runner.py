from __future__ import annotations

from .arguments import build_nscb_args
from .config import DEFAULT_NSCB_EXE_NAME
from .integrations import resolve_keys_path
from .runner import ToolRunner
from .types import Operation, RunSession


class NscbRunner(ToolRunner):
    """Runs nscb_rust for compress/decompress/merge/convert/split/create/trim."""

    name = "nscb"
    tool_label = "nscb_rust"
    default_exe_name = DEFAULT_NSCB_EXE_NAME
    supported_operations = frozenset(Operation)

    def build_args(self, session: RunSession, batch: list[str]) -> list[str]:
        # Key file is resolved before every launch.
        return build_nscb_args(
            session.operation,
            batch,
            session.options,
            keys_path=resolve_keys_path(self.tools_dir),
        )
