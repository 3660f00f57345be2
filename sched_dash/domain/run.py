"""Run entity: one supervised execution of the external scheduler."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from .events import Pid, SchedulerEvent, parse_iso_datetime

STDERR_TAIL_LINES = 50


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    ERROR = "error"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.FINISHED, RunStatus.ERROR, RunStatus.KILLED)


class FailureReason(str, Enum):
    """Why a run ended in ``error``."""

    LAUNCH_FAILED = "launch_failed"
    CRASHED = "crashed"
    NONZERO_EXIT = "nonzero_exit"
    ORPHANED = "orphaned"


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Launch configuration serialized into the scheduler's config file."""

    algorithm: str
    jobs: tuple[Mapping[str, Any], ...] = ()
    quantum: int | None = None
    levels: tuple[Mapping[str, Any], ...] = ()
    extra_args: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "mode": self.algorithm,
            "jobs": [dict(job) for job in self.jobs],
        }
        if self.quantum is not None:
            payload["quantum"] = self.quantum
        if self.levels:
            payload["mlfq"] = [dict(level) for level in self.levels]
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RunConfig":
        algorithm = str(payload.get("algorithm") or payload.get("mode") or "").strip()
        if not algorithm:
            raise ValueError("Run config requires an algorithm")

        jobs = payload.get("jobs") or ()
        if not isinstance(jobs, (list, tuple)) or not all(isinstance(job, Mapping) for job in jobs):
            raise ValueError("Run config 'jobs' must be a list of objects")

        levels = payload.get("levels") or payload.get("mlfq") or ()
        if not isinstance(levels, (list, tuple)):
            raise ValueError("Run config 'levels' must be a list")

        quantum = payload.get("quantum")
        if quantum is not None:
            quantum = int(quantum)
            if quantum <= 0:
                raise ValueError("Run config 'quantum' must be positive")

        extra_args = payload.get("extra_args") or ()
        return cls(
            algorithm=algorithm,
            jobs=tuple(dict(job) for job in jobs),
            quantum=quantum,
            levels=tuple(dict(level) for level in levels if isinstance(level, Mapping)),
            extra_args=tuple(str(arg) for arg in extra_args),
        )


@dataclass(slots=True)
class Run:
    """Mutable run record owned by the process supervisor."""

    run_id: str
    algorithm: str
    args: tuple[str, ...] = ()
    status: RunStatus = RunStatus.PENDING
    started_at: datetime | None = None
    finished_at: datetime | None = None
    exit_code: int | None = None
    os_pid: int | None = None
    failure_reason: FailureReason | None = None
    error_message: str | None = None
    summary: SchedulerEvent | None = None
    current_pid: Pid | None = None
    config: Mapping[str, Any] = field(default_factory=dict)
    stderr_tail: deque[str] = field(default_factory=lambda: deque(maxlen=STDERR_TAIL_LINES))

    @property
    def is_running(self) -> bool:
        return self.status is RunStatus.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "algorithm": self.algorithm,
            "args": list(self.args),
            "status": self.status.value,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "exit_code": self.exit_code,
            "os_pid": self.os_pid,
            "failure_reason": self.failure_reason.value if self.failure_reason else None,
            "error_message": self.error_message,
            "summary": self.summary.to_dict() if self.summary is not None else None,
            "current_pid": self.current_pid,
            "config": dict(self.config),
            "stderr_tail": list(self.stderr_tail),
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Run":
        summary = payload.get("summary")
        failure_reason = payload.get("failure_reason")
        config = payload.get("config")
        run = cls(
            run_id=str(payload["run_id"]),
            algorithm=str(payload.get("algorithm", "")),
            args=tuple(str(arg) for arg in payload.get("args") or ()),
            status=RunStatus(payload.get("status", RunStatus.PENDING.value)),
            started_at=parse_iso_datetime(payload.get("started_at")),
            finished_at=parse_iso_datetime(payload.get("finished_at")),
            exit_code=payload.get("exit_code"),
            os_pid=payload.get("os_pid"),
            failure_reason=FailureReason(failure_reason) if failure_reason else None,
            error_message=payload.get("error_message"),
            summary=SchedulerEvent.from_dict(summary) if isinstance(summary, Mapping) else None,
            current_pid=payload.get("current_pid"),
            config=dict(config) if isinstance(config, Mapping) else {},
        )
        run.stderr_tail.extend(str(line) for line in payload.get("stderr_tail") or ())
        return run


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()

