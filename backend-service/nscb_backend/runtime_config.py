from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from .config import Settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeConfig:
    tools_dir: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> RuntimeConfig:
        return cls(tools_dir=settings.tools_dir or None)


def _default_runtime_config_path() -> Path:
    return Path.home() / ".nscb-desktop" / "runtime-config.json"


class RuntimeConfigStore:
    """Persists the last-used tools directory across restarts."""

    def __init__(self, settings: Settings):
        self._lock = threading.RLock()
        self._path = Path(settings.runtime_config_path).expanduser() if settings.runtime_config_path else _default_runtime_config_path()
        self._config = RuntimeConfig.from_settings(settings)
        self._load_from_disk()

    @property
    def path(self) -> Path:
        return self._path

    def get(self) -> RuntimeConfig:
        with self._lock:
            return RuntimeConfig(**asdict(self._config))

    def public_view(self) -> dict[str, Any]:
        cfg = self.get()
        return {
            "tools_dir": cfg.tools_dir,
            "config_path": str(self._path),
        }

    def update(self, *, tools_dir: str | None = None, clear_tools_dir: bool = False) -> RuntimeConfig:
        with self._lock:
            next_cfg = RuntimeConfig(**asdict(self._config))

            if clear_tools_dir:
                next_cfg.tools_dir = None
            elif tools_dir is not None:
                cleaned = tools_dir.strip()
                if not cleaned:
                    raise ValueError("tools_dir cannot be empty")
                next_cfg.tools_dir = str(Path(cleaned).expanduser())

            self._config = next_cfg
            self._persist_locked()
            return RuntimeConfig(**asdict(self._config))

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
            parsed = json.loads(raw)
            if not isinstance(parsed, dict):
                return
        except Exception:
            logger.exception("Failed loading runtime config from %s", self._path)
            return

        tools_dir = parsed.get("tools_dir")
        if not tools_dir:
            return
        try:
            self.update(tools_dir=str(tools_dir))
        except Exception:
            logger.exception("Runtime config file is invalid; keeping defaults")

    def _persist_locked(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(asdict(self._config), indent=2, ensure_ascii=True)
        temp_path = self._path.with_suffix(".tmp")
        temp_path.write_text(payload + "\n", encoding="utf-8")
        os.replace(temp_path, self._path)
        try:
            os.chmod(self._path, 0o600)
        except OSError:
            pass
