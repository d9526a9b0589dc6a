from __future__ import annotations

import os
import stat
import sys
import tempfile
import time
import unittest
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient

from nscb_backend.api import create_app
from nscb_backend.config import Settings
from nscb_backend.service_container import build_services


class ApiTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.tools_dir = root / "tools"
        self.tools_dir.mkdir()
        self.settings = Settings(
            runtime_config_path=str(root / "runtime-config.json"),
            nscb_exe_name="nscb_rust",
            squirrel_exe_name="squirrel",
            cancel_grace_seconds=0.2,
        )
        self.services = build_services(self.settings)
        self.client_cm = TestClient(create_app(self.services))
        self.client = self.client_cm.__enter__()

    def tearDown(self) -> None:
        self.client_cm.__exit__(None, None, None)
        self._tmp.cleanup()

    def _install_tool(self, body: str) -> None:
        path = self.tools_dir / "nscb_rust"
        path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
        path.chmod(path.stat().st_mode | stat.S_IXUSR)

    def _wait_for_event(self, event_type: str, timeout: float = 10.0) -> list[dict[str, Any]]:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            events = self.client.get("/v1/events", params={"since_id": 0, "limit": 1000}).json()
            if any(event["type"] == event_type for event in events):
                return events
            time.sleep(0.05)
        raise AssertionError(f"no {event_type} event")

    def test_health(self) -> None:
        self.assertEqual(self.client.get("/health").json(), {"ok": True})

    def test_integrations_report_blockers(self) -> None:
        payload = self.client.get("/health/integrations").json()
        self.assertFalse(payload["ready"])
        self.assertFalse(payload["tools_dir_configured"])
        self.assertEqual(len(payload["blockers"]), 1)

    def test_patch_runtime_config_rejects_directory_without_tool(self) -> None:
        response = self.client.patch("/v1/runtime/config", json={"tools_dir": str(self.tools_dir)})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "nscb_rust not found in that directory.")
        self.assertIsNone(self.client.get("/v1/runtime/config").json()["tools_dir"])

    def test_validate_tools_dir(self) -> None:
        response = self.client.get("/v1/runtime/tools-dir/validate", params={"path": str(self.tools_dir)})
        self.assertFalse(response.json()["valid"])

        self._install_tool("print('ok')\n")
        response = self.client.get("/v1/runtime/tools-dir/validate", params={"path": str(self.tools_dir)})
        self.assertEqual(response.json(), {"path": str(self.tools_dir), "valid": True, "detail": None})

    def test_patch_runtime_config_updates_runners(self) -> None:
        self._install_tool("print('ok')\n")
        (self.tools_dir / "prod.keys").write_text("k = 0\n", encoding="utf-8")

        response = self.client.patch("/v1/runtime/config", json={"tools_dir": str(self.tools_dir)})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["tools_dir"], str(self.tools_dir))
        self.assertEqual(self.services.merge.tools_dir, self.tools_dir)
        status = self.client.get("/v1/runners/nscb").json()
        self.assertEqual(status["tools_dir"], str(self.tools_dir))
        self.assertTrue(self.client.get("/health/integrations").json()["ready"])

        cleared = self.client.patch("/v1/runtime/config", json={"clear_tools_dir": True})
        self.assertIsNone(cleared.json()["tools_dir"])
        self.assertIsNone(self.services.nscb.tools_dir)

    def test_unknown_runner_is_404(self) -> None:
        self.assertEqual(self.client.get("/v1/runners/unknown").status_code, 404)
        response = self.client.post("/v1/runners/unknown/run", json={"operation": "compress", "files": ["a.nsp"]})
        self.assertEqual(response.status_code, 404)

    def test_run_request_validation(self) -> None:
        response = self.client.post("/v1/runners/nscb/run", json={"operation": "compress", "files": []})
        self.assertEqual(response.status_code, 422)
        response = self.client.post(
            "/v1/runners/nscb/run",
            json={"operation": "compress", "files": ["a.nsp"], "options": {"level": 40}},
        )
        self.assertEqual(response.status_code, 422)

    def test_run_without_tools_directory_reports_error_event(self) -> None:
        response = self.client.post("/v1/runners/nscb/run", json={"operation": "compress", "files": ["/games/a.nsp"]})

        self.assertEqual(response.status_code, 202)
        self.assertFalse(response.json()["accepted"])
        events = self._wait_for_event("error")
        self.assertEqual(events[-1]["runner"], "nscb")
        self.assertIn("path not configured", events[-1]["data"]["message"])

    @unittest.skipIf(os.name == "nt", "fake tools are POSIX scripts")
    def test_run_publishes_events_until_done(self) -> None:
        self._install_tool("print('Compressing 1/2', flush=True)\nprint('Done!', flush=True)\n")
        self.services.set_tools_directory(str(self.tools_dir))

        response = self.client.post(
            "/v1/runners/nscb/run",
            json={"operation": "compress", "files": ["/games/a.nsp"], "options": {"level": 3}},
        )

        self.assertEqual(response.status_code, 202)
        self.assertEqual(
            response.json(),
            {"accepted": True, "runner": "nscb", "operation": "compress", "running_operation": "compress"},
        )
        events = self._wait_for_event("done")
        done = [event for event in events if event["type"] == "done"]
        self.assertEqual(done[0]["data"], {"op": "compress", "code": 0})
        percents = [event["data"]["percent"] for event in events if event["type"] == "progress"]
        self.assertEqual(percents, [50.0, 100.0, 100.0])
        self.assertFalse(self.client.get("/v1/runners/nscb").json()["running"])

    @unittest.skipIf(os.name == "nt", "fake tools are POSIX scripts")
    def test_cancel_endpoint(self) -> None:
        self._install_tool("import time\nprint('ready', flush=True)\ntime.sleep(30)\n")
        self.services.set_tools_directory(str(self.tools_dir))

        self.client.post("/v1/runners/nscb/run", json={"operation": "split", "files": ["/games/a.xci"]})
        self._wait_for_event("output")
        response = self.client.post("/v1/runners/nscb/cancel")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["state"], "cancelling")
        events = self._wait_for_event("cancelled")
        self.assertNotIn("done", [event["type"] for event in events])


if __name__ == "__main__":
    unittest.main()
