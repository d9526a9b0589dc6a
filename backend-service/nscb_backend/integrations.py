from __future__ import annotations

from pathlib import Path
from typing import Any

from .config import Settings

KEY_FILE_NAMES = ("prod.keys", "keys.txt")
VERSION_FILE_NAME = "version.txt"


def executable_path(tools_dir: str | Path | None, exe_name: str) -> Path | None:
    if not tools_dir:
        return None
    return Path(tools_dir).expanduser() / exe_name


def has_executable(tools_dir: str | Path | None, exe_name: str) -> bool:
    path = executable_path(tools_dir, exe_name)
    return path is not None and path.is_file()


def resolve_keys_path(tools_dir: str | Path | None) -> Path | None:
    if not tools_dir:
        return None
    base = Path(tools_dir).expanduser()
    for name in KEY_FILE_NAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def read_backend_version(tools_dir: str | Path | None) -> str:
    if not tools_dir:
        return ""
    version_file = Path(tools_dir).expanduser() / VERSION_FILE_NAME
    if not version_file.is_file():
        return ""
    try:
        return version_file.read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def tools_integration_status(tools_dir: str | None, settings: Settings) -> dict[str, Any]:
    keys_path = resolve_keys_path(tools_dir)
    nscb_available = has_executable(tools_dir, settings.nscb_exe_name)
    squirrel_available = has_executable(tools_dir, settings.squirrel_exe_name)
    status: dict[str, Any] = {
        "tools_dir": tools_dir,
        "tools_dir_configured": bool(tools_dir),
        "nscb_exe_name": settings.nscb_exe_name,
        "nscb_available": nscb_available,
        "squirrel_exe_name": settings.squirrel_exe_name,
        "squirrel_available": squirrel_available,
        "keys_path": str(keys_path) if keys_path else None,
        "has_keys": keys_path is not None,
        "backend_version": read_backend_version(tools_dir),
    }

    blockers: list[str] = []
    if not tools_dir:
        blockers.append("Tools directory is not configured. Set it in Settings.")
    elif not nscb_available:
        blockers.append(f"{settings.nscb_exe_name} not found in the tools directory.")
    if tools_dir and keys_path is None:
        blockers.append("No prod.keys or keys.txt found in the tools directory.")
    status["ready"] = not blockers
    status["blockers"] = blockers
    return status
