from __future__ import annotations

import math
import os
from datetime import datetime, timezone


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def display_name(file_path: str) -> str:
    # Inputs may use either separator regardless of host platform.
    return file_path.replace("\\", "/").rstrip("/").split("/")[-1]


def parent_dir(file_path: str) -> str:
    return os.path.dirname(os.path.normpath(file_path)) or "."


def round_percent(value: float) -> float:
    return math.floor(value * 10 + 0.5) / 10
