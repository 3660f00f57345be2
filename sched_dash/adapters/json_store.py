"""File-backed run store: one JSON record per run, one JSONL log per run."""

from __future__ import annotations

import json
from pathlib import Path
from threading import RLock

from sched_dash.domain.events import SchedulerEvent
from sched_dash.domain.run import FailureReason, Run, RunStatus
from sched_dash.utils.jsonio import read_json_object, write_json_atomic
from sched_dash.utils.logging import setup_logger

logger = setup_logger("sched_dash.store")


class JsonRunStore:
    """Layout under ``root``::

        runs/<run_id>.json      run fields plus ``events_path``
        events/<run_id>.jsonl   {"run_id", "sequence", "tick", "event"} per line

    A record still marked ``running`` when read back belongs to a dashboard
    that died mid-run; it is reported as an orphaned ``error`` run.
    """

    def __init__(self, root: Path | str) -> None:
        self._root = Path(root)
        self._runs_dir = self._root / "runs"
        self._events_dir = self._root / "events"
        self._runs_dir.mkdir(parents=True, exist_ok=True)
        self._events_dir.mkdir(parents=True, exist_ok=True)
        self._lock = RLock()

    @property
    def root(self) -> Path:
        return self._root

    def events_path(self, run_id: str) -> Path:
        return self._events_dir / f"{run_id}.jsonl"

    def save_run(self, run: Run) -> None:
        payload = run.to_dict()
        payload["events_path"] = str(self.events_path(run.run_id).relative_to(self._root))
        with self._lock:
            write_json_atomic(self._runs_dir / f"{run.run_id}.json", payload)

    def load_run(self, run_id: str) -> Run | None:
        with self._lock:
            payload = read_json_object(self._runs_dir / f"{run_id}.json")
        if payload is None:
            return None
        return self._decode_run(payload)

    def list_runs(self) -> list[Run]:
        with self._lock:
            paths = sorted(self._runs_dir.glob("*.json"))
            payloads = [read_json_object(path) for path in paths]

        runs: list[Run] = []
        for path, payload in zip(paths, payloads):
            if payload is None:
                logger.warning("Skipping unreadable run record %s", path)
                continue
            run = self._decode_run(payload)
            if run is not None:
                runs.append(run)
        return runs

    def append_event(self, event: SchedulerEvent) -> None:
        record = {
            "run_id": event.run_id,
            "sequence": event.sequence,
            "tick": event.tick,
            "event": event.to_dict(),
        }
        line = json.dumps(record, sort_keys=True)
        with self._lock:
            with self.events_path(event.run_id).open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def load_events(self, run_id: str) -> list[SchedulerEvent]:
        path = self.events_path(run_id)
        with self._lock:
            if not path.exists():
                return []
            lines = path.read_text(encoding="utf-8").splitlines()

        events: list[SchedulerEvent] = []
        for line in lines:
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                # A crash can leave the final line half-written.
                logger.warning("Ignoring corrupt event record in %s", path)
                continue
            payload = record.get("event") if isinstance(record, dict) else None
            if isinstance(payload, dict):
                events.append(SchedulerEvent.from_dict(payload))
        events.sort(key=lambda event: event.sequence)
        return events

    @staticmethod
    def _decode_run(payload: dict) -> Run | None:
        try:
            run = Run.from_dict(payload)
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Skipping malformed run record: %s", exc)
            return None
        if run.status in (RunStatus.RUNNING, RunStatus.PENDING):
            run.status = RunStatus.ERROR
            run.failure_reason = FailureReason.ORPHANED
            run.error_message = run.error_message or "Dashboard stopped while the run was active"
        return run
