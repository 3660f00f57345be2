"""Launch the external scheduler and ingest its output into the run log."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from subprocess import DEVNULL, PIPE, Popen, TimeoutExpired
from threading import Event, RLock, Thread
from typing import Callable, Sequence
from uuid import uuid4

from sched_dash.application.broadcaster import LiveBroadcaster
from sched_dash.application.normalizer import normalize
from sched_dash.application.run_log import RunLog
from sched_dash.domain.events import DISPATCH_KINDS, RELEASE_KINDS, EventKind, SchedulerEvent
from sched_dash.domain.run import FailureReason, Run, RunConfig, RunStatus
from sched_dash.ports.run_store import RunStore
from sched_dash.utils.jsonio import write_json_atomic
from sched_dash.utils.logging import setup_logger

logger = setup_logger("sched_dash.supervisor")


class RunLaunchError(RuntimeError):
    """The scheduler process could not be started; the run is recorded as ``error``."""

    def __init__(self, run_id: str, message: str) -> None:
        super().__init__(message)
        self.run_id = run_id


@dataclass(slots=True)
class _Supervised:
    run: Run
    process: Popen[str] | None = None
    stop_requested: bool = False
    done: Event = field(default_factory=Event)
    readers: list[Thread] = field(default_factory=list)


class ProcessSupervisor:
    """Owns every scheduler process and is the only writer of their run logs.

    Each run gets two reader threads. The stdout reader normalizes and appends
    lines; once stdout closes it waits for the stderr reader and the process,
    then seals the log and publishes the terminal envelope.
    """

    def __init__(
        self,
        run_log: RunLog,
        broadcaster: LiveBroadcaster,
        *,
        command: Sequence[str],
        work_dir: Path | str,
        store: RunStore | None = None,
        stop_grace_seconds: float = 5.0,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        if not command:
            raise ValueError("Scheduler command must not be empty")
        self._run_log = run_log
        self._broadcaster = broadcaster
        self._command = tuple(command)
        self._work_dir = Path(work_dir)
        self._store = store
        self._stop_grace_seconds = stop_grace_seconds
        self._id_factory = id_factory or (lambda: uuid4().hex[:12])
        self._runs: dict[str, _Supervised] = {}
        self._lock = RLock()

    @property
    def command(self) -> tuple[str, ...]:
        return self._command

    def start(self, config: RunConfig) -> str:
        run_id = self._id_factory()
        self._work_dir.mkdir(parents=True, exist_ok=True)
        config_path = self._work_dir / f"run-{run_id}.json"
        write_json_atomic(config_path, config.to_dict())

        argv = [*self._command, "--config", str(config_path), *config.extra_args]
        run = Run(
            run_id=run_id,
            algorithm=config.algorithm,
            args=tuple(argv),
            status=RunStatus.RUNNING,
            started_at=datetime.now(timezone.utc),
            config=config.to_dict(),
        )
        supervised = _Supervised(run=run)

        try:
            process = Popen(
                argv,
                stdin=DEVNULL,
                stdout=PIPE,
                stderr=PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                bufsize=1,
            )
        except OSError as exc:
            run.status = RunStatus.ERROR
            run.failure_reason = FailureReason.LAUNCH_FAILED
            run.error_message = f"Failed to launch scheduler: {exc}"
            run.finished_at = datetime.now(timezone.utc)
            supervised.done.set()
            with self._lock:
                self._runs[run_id] = supervised
            self._run_log.seal(run_id)
            self._persist(run)
            self._broadcaster.publish_run_finished(run)
            logger.error("Run %s failed to launch %s: %s", run_id, argv, exc)
            raise RunLaunchError(run_id, run.error_message) from exc

        run.os_pid = process.pid
        supervised.process = process
        with self._lock:
            self._runs[run_id] = supervised
        self._persist(run)
        logger.info("Run %s started (%s) with os pid %s", run_id, " ".join(argv), process.pid)

        stderr_reader = Thread(
            target=self._consume_stderr,
            args=(supervised,),
            name=f"sched-dash-stderr-{run_id}",
            daemon=True,
        )
        stdout_reader = Thread(
            target=self._consume_stdout,
            args=(supervised, stderr_reader),
            name=f"sched-dash-stdout-{run_id}",
            daemon=True,
        )
        supervised.readers.extend((stdout_reader, stderr_reader))
        stderr_reader.start()
        stdout_reader.start()
        return run_id

    def stop(self, run_id: str) -> Run:
        """Terminate a running run; a finished run is returned unchanged."""
        supervised = self._supervised(run_id)
        with self._lock:
            process = supervised.process
            if supervised.run.status is not RunStatus.RUNNING or process is None:
                return self._snapshot(supervised.run)
            if process.poll() is not None:
                return self._snapshot(supervised.run)
            supervised.stop_requested = True

        logger.info("Stopping run %s (os pid %s)", run_id, process.pid)
        process.terminate()
        try:
            process.wait(timeout=self._stop_grace_seconds)
        except TimeoutExpired:
            logger.warning("Run %s ignored terminate; killing", run_id)
            process.kill()
            process.wait()
        supervised.done.wait(timeout=self._stop_grace_seconds)
        return self._snapshot(supervised.run)

    def wait(self, run_id: str, timeout: float | None = None) -> Run:
        supervised = self._supervised(run_id)
        supervised.done.wait(timeout=timeout)
        return self._snapshot(supervised.run)

    def get_run(self, run_id: str) -> Run:
        with self._lock:
            supervised = self._runs.get(run_id)
            if supervised is not None:
                return self._snapshot(supervised.run)
        if self._store is not None:
            stored = self._store.load_run(run_id)
            if stored is not None:
                return stored
        raise KeyError(f"Unknown run id: {run_id}")

    def list_runs(self) -> list[Run]:
        """Live and stored runs, newest first."""
        with self._lock:
            runs = {run_id: self._snapshot(supervised.run) for run_id, supervised in self._runs.items()}
        if self._store is not None:
            for stored in self._store.list_runs():
                runs.setdefault(stored.run_id, stored)
        epoch = datetime.min.replace(tzinfo=timezone.utc)
        return sorted(runs.values(), key=lambda run: run.started_at or epoch, reverse=True)

    def running_run_ids(self) -> list[str]:
        with self._lock:
            return [
                run_id
                for run_id, supervised in self._runs.items()
                if supervised.run.status is RunStatus.RUNNING
            ]

    def close(self) -> None:
        for run_id in self.running_run_ids():
            self.stop(run_id)

    def _supervised(self, run_id: str) -> _Supervised:
        with self._lock:
            supervised = self._runs.get(run_id)
        if supervised is not None:
            return supervised

        # Runs from an earlier session are already terminal.
        stored = _Supervised(run=self.get_run(run_id))
        stored.done.set()
        return stored

    def _consume_stdout(self, supervised: _Supervised, stderr_reader: Thread) -> None:
        run = supervised.run
        process = supervised.process
        assert process is not None and process.stdout is not None
        try:
            for line in process.stdout:
                if not line.strip():
                    continue
                event = normalize(line)
                if event.is_raw:
                    logger.debug("Run %s: non-JSON stdout line kept as raw: %r", run.run_id, line)
                sequence = self._run_log.append(run.run_id, event)
                self._track(supervised, event, sequence)
        finally:
            process.stdout.close()
            stderr_reader.join()
            exit_code = process.wait()
            self._finalize(supervised, exit_code)

    def _consume_stderr(self, supervised: _Supervised) -> None:
        run = supervised.run
        process = supervised.process
        assert process is not None and process.stderr is not None
        try:
            for line in process.stderr:
                text = line.rstrip("\r\n")
                with self._lock:
                    run.stderr_tail.append(text)
                self._broadcaster.publish_stderr(run.run_id, text)
        finally:
            process.stderr.close()

    def _track(self, supervised: _Supervised, event: SchedulerEvent, sequence: int) -> None:
        run = supervised.run
        with self._lock:
            if event.kind == EventKind.SUMMARY.value:
                run.summary = self._run_log.read(run.run_id, sequence)[0]
            elif event.kind in DISPATCH_KINDS:
                run.current_pid = None if event.is_idle else event.pid
            elif event.kind in RELEASE_KINDS and event.pid == run.current_pid:
                run.current_pid = None

    def _finalize(self, supervised: _Supervised, exit_code: int) -> None:
        run = supervised.run
        with self._lock:
            run.exit_code = exit_code
            run.finished_at = datetime.now(timezone.utc)
            run.current_pid = None
            # A process that finished on its own before the stop landed keeps its result.
            if supervised.stop_requested and exit_code != 0:
                run.status = RunStatus.KILLED
            elif exit_code == 0:
                run.status = RunStatus.FINISHED
            else:
                run.status = RunStatus.ERROR
                run.failure_reason = (
                    FailureReason.NONZERO_EXIT if run.summary is not None else FailureReason.CRASHED
                )
                run.error_message = f"Scheduler exited with code {exit_code}"

        self._run_log.seal(run.run_id)
        self._persist(run)
        if run.status is RunStatus.KILLED:
            self._broadcaster.publish_run_killed(run)
        else:
            self._broadcaster.publish_run_finished(run)
        supervised.done.set()
        logger.info(
            "Run %s exited with code %s (%s, %s events)",
            run.run_id,
            exit_code,
            run.status.value,
            self._run_log.count(run.run_id),
        )

    def _persist(self, run: Run) -> None:
        if self._store is None:
            return
        with self._lock:
            self._store.save_run(run)

    def _snapshot(self, run: Run) -> Run:
        """Copy of ``run`` that reader threads will not mutate afterwards."""
        with self._lock:
            copied = replace(run, stderr_tail=deque(run.stderr_tail, maxlen=run.stderr_tail.maxlen))
            copied.config = dict(run.config)
            return copied
