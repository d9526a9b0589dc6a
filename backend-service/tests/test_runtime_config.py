from __future__ import annotations

import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from nscb_backend.config import Settings, load_settings
from nscb_backend.events import EventEmitter, EventJournal
from nscb_backend.runtime_config import RuntimeConfigStore
from nscb_backend.types import ProgressEvent, RunOptions


class RuntimeConfigStoreTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.config_path = Path(self._tmp.name) / "state" / "runtime-config.json"
        self.settings = Settings(runtime_config_path=str(self.config_path))

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_update_persists_and_reloads(self) -> None:
        store = RuntimeConfigStore(self.settings)
        self.assertIsNone(store.get().tools_dir)

        store.update(tools_dir="  /opt/nscb  ")

        self.assertEqual(json.loads(self.config_path.read_text(encoding="utf-8")), {"tools_dir": "/opt/nscb"})
        reloaded = RuntimeConfigStore(self.settings)
        self.assertEqual(reloaded.get().tools_dir, "/opt/nscb")
        self.assertEqual(reloaded.public_view()["config_path"], str(self.config_path))

    def test_clear_tools_dir(self) -> None:
        store = RuntimeConfigStore(self.settings)
        store.update(tools_dir="/opt/nscb")
        store.update(clear_tools_dir=True)
        self.assertIsNone(RuntimeConfigStore(self.settings).get().tools_dir)

    def test_empty_tools_dir_is_rejected(self) -> None:
        store = RuntimeConfigStore(self.settings)
        with self.assertRaises(ValueError):
            store.update(tools_dir="   ")

    def test_settings_tools_dir_is_the_default(self) -> None:
        settings = Settings(runtime_config_path=str(self.config_path), tools_dir="/env/tools")
        self.assertEqual(RuntimeConfigStore(settings).get().tools_dir, "/env/tools")

    def test_corrupt_file_keeps_defaults(self) -> None:
        self.config_path.parent.mkdir(parents=True)
        self.config_path.write_text("{not json", encoding="utf-8")
        with self.assertLogs("nscb_backend.runtime_config", level="ERROR"):
            store = RuntimeConfigStore(self.settings)
        self.assertIsNone(store.get().tools_dir)


class SettingsTests(unittest.TestCase):
    def test_load_settings_reads_environment(self) -> None:
        env = {
            "NSCB_TOOLS_DIR": " /opt/tools ",
            "NSCB_PORT": "9000",
            "NSCB_CANCEL_GRACE_SECONDS": "1.5",
            "NSCB_LOG_LEVEL": "debug",
        }
        with mock.patch.dict(os.environ, env):
            settings = load_settings()
        self.assertEqual(settings.tools_dir, "/opt/tools")
        self.assertEqual(settings.port, 9000)
        self.assertEqual(settings.cancel_grace_seconds, 1.5)
        self.assertEqual(settings.log_level, "DEBUG")

    def test_run_options_coerce_drops_unknown_and_null_keys(self) -> None:
        options = RunOptions.coerce({"level": 5, "format": None, "colour": "red"})
        self.assertEqual(options, RunOptions(level=5))
        self.assertEqual(RunOptions.coerce(None), RunOptions())


class EventTests(unittest.TestCase):
    def test_unsubscribe_and_failing_listener(self) -> None:
        emitter = EventEmitter()
        seen: list[str] = []

        def boom(_payload: object) -> None:
            raise RuntimeError("listener failure")

        emitter.on("log", boom)
        unsubscribe = emitter.on("log", seen.append)
        with self.assertLogs("nscb_backend.events", level="ERROR"):
            emitter.emit("log", "first")
        unsubscribe()
        emitter.emit("log", "second")

        self.assertEqual(seen, ["first"])
        with self.assertRaises(ValueError):
            emitter.on("finished", seen.append)

    def test_remove_all_listeners(self) -> None:
        emitter = EventEmitter()
        seen: list[object] = []
        emitter.on("done", seen.append)
        emitter.on("error", seen.append)

        emitter.remove_all_listeners()
        emitter.emit("done", "x")
        emitter.emit("error", "y")

        self.assertEqual(seen, [])

    def test_journal_records_and_bounds_events(self) -> None:
        journal = EventJournal(max_events=2)
        emitter = EventEmitter()
        journal.attach("nscb", emitter)

        emitter.emit("progress", ProgressEvent("compress", 10.0, "Compressing... 1 / 10"))
        emitter.emit("progress", ProgressEvent("compress", 20.0, "Compressing... 2 / 10"))
        emitter.emit("progress", ProgressEvent("compress", 30.0, "Compressing... 3 / 10"))

        events = journal.list_events()
        self.assertEqual([event["id"] for event in events], [2, 3])
        self.assertEqual(events[-1]["runner"], "nscb")
        self.assertEqual(events[-1]["type"], "progress")
        self.assertEqual(events[-1]["data"], {"op": "compress", "percent": 30.0, "message": "Compressing... 3 / 10"})
        self.assertEqual([event["id"] for event in journal.list_events(after_id=2)], [3])
        self.assertEqual(journal.last_id, 3)


if __name__ == "__main__":
    unittest.main()
