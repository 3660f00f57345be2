"""Canonical scheduler event record stored in the run log."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

IDLE_PID = "idle"

Pid = int | str


class EventKind(str, Enum):
    """Event kinds understood by the reconstructors."""

    JOB_ARRIVED = "job_arrived"
    JOB_STARTED = "job_started"
    JOB_RESUMED = "job_resumed"
    JOB_PREEMPTED = "job_preempted"
    JOB_FINISHED = "job_finished"
    CONTEXT_SWITCH = "context_switch"
    GANTT_SLICE = "gantt_slice"
    TICK = "tick"
    STARVATION_WARNING = "starvation_warning"
    SUMMARY = "summary"
    RAW = "raw"


# Kinds that hand the CPU to the event's pid (or to idle when pid is missing).
DISPATCH_KINDS = frozenset(
    {
        EventKind.JOB_STARTED.value,
        EventKind.JOB_RESUMED.value,
        EventKind.CONTEXT_SWITCH.value,
    }
)
RELEASE_KINDS = frozenset(
    {
        EventKind.JOB_PREEMPTED.value,
        EventKind.JOB_FINISHED.value,
    }
)
# Kinds that describe a process; anything else is stored but never reconstructed.
PROCESS_KINDS = DISPATCH_KINDS | RELEASE_KINDS | frozenset(
    {
        EventKind.JOB_ARRIVED.value,
        EventKind.GANTT_SLICE.value,
        EventKind.TICK.value,
        EventKind.STARVATION_WARNING.value,
    }
)


@dataclass(frozen=True, slots=True)
class SchedulerEvent:
    """One normalized event reported by the external scheduler.

    ``sequence`` is assigned by the run log and is the only ordering field
    that can be trusted; ``tick`` comes from the scheduler and may repeat or
    go backwards. ``kind`` stays a plain string so unknown kinds survive.
    """

    kind: str
    run_id: str = ""
    sequence: int = -1
    tick: int | None = None
    pid: Pid | None = None
    burst: int | None = None
    remaining: int | None = None
    priority: int | None = None
    arrival: int | None = None
    reason: str | None = None
    text: str | None = None
    extra: Mapping[str, Any] = field(default_factory=dict)
    received_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_idle(self) -> bool:
        return self.pid is None or self.pid == IDLE_PID

    @property
    def is_raw(self) -> bool:
        return self.kind == EventKind.RAW.value

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "run_id": self.run_id,
            "sequence": self.sequence,
            "tick": self.tick,
            "kind": self.kind,
            "pid": self.pid,
            "received_at": self.received_at.isoformat(),
        }
        for name in ("burst", "remaining", "priority", "arrival", "reason", "text"):
            value = getattr(self, name)
            if value is not None:
                payload[name] = value
        if self.extra:
            payload["extra"] = dict(self.extra)
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "SchedulerEvent":
        """Rebuild an event previously serialized with ``to_dict``."""
        received_at = parse_iso_datetime(payload.get("received_at"))
        extra = payload.get("extra")
        return cls(
            kind=str(payload.get("kind", EventKind.RAW.value)),
            run_id=str(payload.get("run_id", "")),
            sequence=int(payload.get("sequence", -1)),
            tick=payload.get("tick"),
            pid=payload.get("pid"),
            burst=payload.get("burst"),
            remaining=payload.get("remaining"),
            priority=payload.get("priority"),
            arrival=payload.get("arrival"),
            reason=payload.get("reason"),
            text=payload.get("text"),
            extra=dict(extra) if isinstance(extra, Mapping) else {},
            received_at=received_at or datetime.now(timezone.utc),
        )


def parse_iso_datetime(value: object) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
