from __future__ import annotations

import os
from dataclasses import dataclass

DEFAULT_NSCB_EXE_NAME = "nscb_rust.exe" if os.name == "nt" else "nscb_rust"
DEFAULT_SQUIRREL_EXE_NAME = "squirrel.exe" if os.name == "nt" else "squirrel"


@dataclass(frozen=True)
class Settings:
    host: str = "127.0.0.1"
    port: int = 8766
    tools_dir: str | None = None
    nscb_exe_name: str = DEFAULT_NSCB_EXE_NAME
    squirrel_exe_name: str = DEFAULT_SQUIRREL_EXE_NAME
    runtime_config_path: str | None = None
    cancel_grace_seconds: float = 3.0
    monitor_interval_seconds: float = 0.5
    monitor_settle_seconds: float = 1.0
    event_journal_size: int = 2000
    log_level: str = "INFO"


def load_settings() -> Settings:
    return Settings(
        host=os.getenv("NSCB_HOST", "127.0.0.1"),
        port=int(os.getenv("NSCB_PORT", "8766")),
        tools_dir=(os.getenv("NSCB_TOOLS_DIR") or "").strip() or None,
        nscb_exe_name=os.getenv("NSCB_EXE_NAME", DEFAULT_NSCB_EXE_NAME).strip(),
        squirrel_exe_name=os.getenv("NSCB_SQUIRREL_EXE_NAME", DEFAULT_SQUIRREL_EXE_NAME).strip(),
        runtime_config_path=(os.getenv("NSCB_RUNTIME_CONFIG_PATH") or "").strip() or None,
        cancel_grace_seconds=float(os.getenv("NSCB_CANCEL_GRACE_SECONDS", "3.0")),
        monitor_interval_seconds=float(os.getenv("NSCB_MONITOR_INTERVAL_SECONDS", "0.5")),
        monitor_settle_seconds=float(os.getenv("NSCB_MONITOR_SETTLE_SECONDS", "1.0")),
        event_journal_size=int(os.getenv("NSCB_EVENT_JOURNAL_SIZE", "2000")),
        log_level=os.getenv("NSCB_LOG_LEVEL", "INFO").strip().upper(),
    )
