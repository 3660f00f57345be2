from __future__ import annotations

import json
import os
import sys
import tempfile
import unittest
from pathlib import Path
from threading import Thread
from unittest import mock
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from sched_dash.application.broadcaster import LiveBroadcaster
from sched_dash.application.run_log import RunLog
from sched_dash.application.supervisor import ProcessSupervisor
from sched_dash.gui.config import DashboardConfig, load_dashboard_config
from sched_dash.gui.contract import CONTRACT_VERSION, DEFAULT_METADATA, ServiceMetadata
from sched_dash.gui.facade import DashboardFacade
from sched_dash.gui.host import DashboardHost
from sched_dash.gui.http_service import DashboardHttpService

FIXTURE = Path(__file__).parent / "fixtures" / "fake_scheduler.py"

RUN_PAYLOAD = {
    "algorithm": "fcfs",
    "jobs": [{"pid": 1, "arrival": 0, "burst": 2}, {"pid": 2, "arrival": 0, "burst": 3}],
}


class GuiPlatformTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.run_log = RunLog()
        self.broadcaster = LiveBroadcaster(self.run_log)
        self.supervisor = ProcessSupervisor(
            self.run_log,
            self.broadcaster,
            command=(sys.executable, str(FIXTURE)),
            work_dir=root / "configs",
        )
        self.facade = DashboardFacade(
            run_log=self.run_log,
            broadcaster=self.broadcaster,
            supervisor=self.supervisor,
        )

    def tearDown(self) -> None:
        self.facade.close()
        self.supervisor.close()
        self.broadcaster.close()
        self._tmp.cleanup()

    def _finished_run(self) -> str:
        run = self.facade.start_run(RUN_PAYLOAD)
        self.supervisor.wait(run["run_id"], timeout=30)
        return run["run_id"]

    def test_facade_exposes_runs_and_diagnostics(self) -> None:
        run_id = self._finished_run()

        runs = self.facade.list_runs()
        self.assertEqual([run["run_id"] for run in runs], [run_id])
        self.assertEqual(runs[0]["status"], "finished")
        self.assertGreater(runs[0]["event_count"], 0)

        diagnostics = self.facade.diagnostics(
            metadata=ServiceMetadata(name="sched-dash", version="0.1.0"),
            base_url="http://127.0.0.1:8780",
            event_stream_status="idle",
            event_stream_active_clients=0,
            event_stream_retried_writes=0,
            event_stream_dropped_clients=0,
        )
        self.assertEqual(diagnostics["contract_version"], CONTRACT_VERSION)
        self.assertEqual(diagnostics["running_runs"], 0)
        self.assertEqual(diagnostics["known_runs"], 1)
        self.assertIsNotNone(diagnostics["last_successful_command_time"])
        self.assertIsNone(diagnostics["last_command_error"])

    def test_timeline_and_metrics_at_a_tick(self) -> None:
        run_id = self._finished_run()

        final = self.facade.timeline(run_id)
        self.assertEqual(
            [(segment["pid"], segment["start"], segment["end"]) for segment in final["segments"]],
            [(1, 0, 2), (2, 2, 5)],
        )
        self.assertEqual(final["max_tick"], 5)

        partial = self.facade.timeline(run_id, tick=3)
        self.assertEqual(partial["segments"][-1]["end"], 4)
        self.assertEqual(partial["running_pid"], 2)

        metrics = self.facade.metrics(run_id)
        waiting = {row["pid"]: row["waiting"] for row in metrics["processes"]}
        self.assertEqual(waiting, {1: 0, 2: 2})
        self.assertEqual([row["waiting"] for row in metrics["reported"]], [0, 2])

        with self.assertRaises(ValueError):
            self.facade.metrics(run_id, tick=-1)

    def test_queue_state_at_a_tick(self) -> None:
        run_id = self._finished_run()

        partial = self.facade.queue_state(run_id, tick=1)
        self.assertEqual(partial["running_pid"], 1)
        self.assertEqual(partial["ready"], [2])
        self.assertEqual(partial["tick"], 1)

        final = self.facade.queue_state(run_id)
        self.assertIsNone(final["running_pid"])
        self.assertEqual(final["completed"], [1, 2])
        self.assertEqual(final["pending"], [])

        with self.assertRaises(KeyError):
            self.facade.queue_state("missing")

    def test_event_list_hides_trivial_events_on_request(self) -> None:
        run_id = self._finished_run()

        everything = self.facade.list_events(run_id)
        significant = self.facade.list_events(run_id, hide_trivial=True)

        self.assertIn("gantt_slice", {event["kind"] for event in everything})
        self.assertNotIn("gantt_slice", {event["kind"] for event in significant})
        self.assertEqual(significant[0]["description"], "Process 1 arrived (Burst: 2)")

    def test_unknown_run_ids_raise_key_error(self) -> None:
        with self.assertRaises(KeyError):
            self.facade.get_run("missing")
        with self.assertRaises(KeyError):
            self.facade.timeline("missing")
        with self.assertRaises(KeyError):
            self.facade.open_playback("missing")
        with self.assertRaises(KeyError):
            self.facade.stop_run("missing")

    def test_invalid_start_payload_is_recorded_as_command_error(self) -> None:
        with self.assertRaises(ValueError):
            self.facade.start_run({"jobs": []})

        diagnostics = self.facade.diagnostics(
            metadata=DEFAULT_METADATA,
            base_url="",
            event_stream_status="idle",
            event_stream_active_clients=0,
            event_stream_retried_writes=0,
            event_stream_dropped_clients=0,
        )
        self.assertIn("algorithm", diagnostics["last_command_error"])

    def test_playback_sessions_are_closed_with_the_facade(self) -> None:
        run_id = self._finished_run()
        controller = self.facade.open_playback(run_id)
        controller.seek(1)

        self.assertEqual(controller.frame().timeline.segments[-1].pid, 1)
        self.facade.close()
        controller.play()
        self.assertEqual(controller.state.value, "idle")

    def test_http_service_round_trip(self) -> None:
        service = DashboardHttpService(
            facade=self.facade,
            metadata=DEFAULT_METADATA,
            host="127.0.0.1",
            port=0,
        )
        service.bind()
        server = Thread(target=service.serve_forever, daemon=True)
        server.start()
        self.addCleanup(service.stop)

        def get(path: str) -> dict:
            with urlopen(service.base_url + path, timeout=10) as response:
                return json.loads(response.read().decode("utf-8"))

        self.assertEqual(get("/api/health")["status"], "ok")
        self.assertEqual(get("/api/meta")["service"]["name"], "sched-dash")

        request = Request(
            service.base_url + "/api/runs",
            data=json.dumps(RUN_PAYLOAD).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        with urlopen(request, timeout=10) as response:
            self.assertEqual(response.status, 201)
            run_id = json.loads(response.read().decode("utf-8"))["run_id"]
        self.supervisor.wait(run_id, timeout=30)

        self.assertEqual(get(f"/api/runs/{run_id}")["status"], "finished")
        self.assertEqual(get(f"/api/runs/{run_id}/metrics?tick=2")["tick"], 2)
        self.assertEqual(get(f"/api/runs/{run_id}/queue")["completed"], [1, 2])
        self.assertTrue(get(f"/api/runs/{run_id}/events?hide_trivial=1")["items"])
        self.assertEqual(get("/api/diagnostics")["service_name"], "sched-dash")

        with self.assertRaises(HTTPError) as missing:
            get("/api/runs/unknown/timeline")
        self.assertEqual(missing.exception.code, 404)
        missing.exception.close()

        with self.assertRaises(HTTPError) as bad_tick:
            get(f"/api/runs/{run_id}/timeline?tick=soon")
        self.assertEqual(bad_tick.exception.code, 400)
        bad_tick.exception.close()


class DashboardConfigTests(unittest.TestCase):
    def test_env_file_parsing_and_environment_override(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            env_file = Path(tmp) / ".env"
            env_file.write_text(
                "\n".join(
                    [
                        "# dashboard",
                        "export DASH_PORT=9100",
                        "DASH_HOST=10.0.0.5",
                        "DASH_SCHEDULER_CMD='./build/scheduler --json'",
                        "DASH_SUBSCRIBER_BUFFER=0",
                        "DASH_PLAYBACK_PERIOD=0.25",
                        "DASH_LOG_LEVEL=chatty",
                    ]
                ),
                encoding="utf-8",
            )

            with mock.patch.dict(os.environ, {"DASH_HOST": "0.0.0.0"}):
                config = load_dashboard_config(str(env_file))

        self.assertEqual(config.port, 9100)
        self.assertEqual(config.host, "0.0.0.0")
        self.assertEqual(config.scheduler_command, ("./build/scheduler", "--json"))
        self.assertEqual(config.subscriber_buffer, 256)
        self.assertEqual(config.playback_period_seconds, 0.25)
        self.assertEqual(config.log_level, "INFO")
        self.assertEqual(config.base_url, "http://0.0.0.0:9100")

    def test_missing_env_file_gives_defaults(self) -> None:
        config = load_dashboard_config("/nonexistent/.env")
        self.assertEqual(config.work_dir, Path(config.data_dir) / "configs")

    def test_host_wires_the_pipeline(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            config = DashboardConfig(
                port=0,
                data_dir=tmp,
                scheduler_command=(sys.executable, str(FIXTURE)),
            )
            host = DashboardHost(config)
            try:
                self.assertIs(host.facade, host.service.facade)
                self.assertEqual(host.supervisor.command, config.scheduler_command)
                self.assertTrue((Path(tmp) / "runs").is_dir())
            finally:
                host.stop()


if __name__ == "__main__":
    unittest.main()
