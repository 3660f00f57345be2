"""Map heterogeneous scheduler output into canonical ``SchedulerEvent`` records.

``normalize`` is total: whatever the external process prints, the result is
an event. Lines that are not JSON objects become ``raw`` events carrying the
original text, so the run log is a record of everything received.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from sched_dash.domain.events import IDLE_PID, EventKind, Pid, SchedulerEvent

_KIND_KEYS = ("kind", "event", "type")
_PID_KEYS = ("pid", "job_id", "process")
_TICK_KEYS = ("tick", "time", "t")
_PAYLOAD_KEYS: dict[str, tuple[str, ...]] = {
    "burst": ("burst", "burst_time"),
    "remaining": ("remaining", "remaining_time"),
    "priority": ("priority", "prio"),
    "arrival": ("arrival", "arrival_time"),
}

# Legacy names printed by older scheduler builds.
_KIND_ALIASES = {
    "running": EventKind.JOB_STARTED.value,
    "stopped": EventKind.JOB_PREEMPTED.value,
    "finished": EventKind.JOB_FINISHED.value,
    "arrival": EventKind.JOB_ARRIVED.value,
    "arrived": EventKind.JOB_ARRIVED.value,
    "switch": EventKind.CONTEXT_SWITCH.value,
    "slice": EventKind.GANTT_SLICE.value,
}

_IDLE_MARKERS = {"idle", "-", "none"}

_CONSUMED_KEYS = frozenset(
    (*_KIND_KEYS, *_PID_KEYS, *_TICK_KEYS, "reason", "data")
    + tuple(key for keys in _PAYLOAD_KEYS.values() for key in keys)
)


def normalize(raw: object) -> SchedulerEvent:
    """Return the canonical event for one stdout line or decoded object."""

    if isinstance(raw, SchedulerEvent):
        return raw
    if raw is None:
        return SchedulerEvent(kind=EventKind.RAW.value, text="")
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        return _normalize_text(raw)
    if isinstance(raw, Mapping):
        return _normalize_mapping(raw)
    return SchedulerEvent(kind=EventKind.RAW.value, text=repr(raw))


def _normalize_text(line: str) -> SchedulerEvent:
    text = line.rstrip("\r\n")
    stripped = text.strip()
    if not stripped.startswith("{"):
        return SchedulerEvent(kind=EventKind.RAW.value, text=text)
    try:
        decoded = json.loads(stripped)
    except (json.JSONDecodeError, RecursionError):
        return SchedulerEvent(kind=EventKind.RAW.value, text=text)
    if not isinstance(decoded, dict):
        return SchedulerEvent(kind=EventKind.RAW.value, text=text)
    return _normalize_mapping(decoded)


def _normalize_mapping(obj: Mapping[str, Any]) -> SchedulerEvent:
    data = obj.get("data")
    nested: Mapping[str, Any] = data if isinstance(data, Mapping) else {}

    kind = _resolve_kind(obj)
    pid = _resolve_pid(obj, nested)
    tick = _as_tick(_first(obj, nested, _TICK_KEYS))
    payload = {
        name: _as_int(_first(obj, nested, keys))
        for name, keys in _PAYLOAD_KEYS.items()
    }
    reason = _first(obj, nested, ("reason",))

    extra = {key: value for key, value in obj.items() if key not in _CONSUMED_KEYS}
    if nested:
        leftover = {key: value for key, value in nested.items() if key not in _CONSUMED_KEYS}
        if leftover:
            extra["data"] = leftover

    text = obj.get("raw") if kind == EventKind.RAW.value else None

    return SchedulerEvent(
        kind=kind,
        tick=tick,
        pid=pid,
        reason=str(reason) if reason is not None else None,
        text=text if isinstance(text, str) else None,
        extra=extra,
        **payload,
    )


def _resolve_kind(obj: Mapping[str, Any]) -> str:
    for key in _KIND_KEYS:
        value = obj.get(key)
        if isinstance(value, str) and value.strip():
            normalized = value.strip().lower()
            return _KIND_ALIASES.get(normalized, normalized)

    # The scheduler's terminal aggregate is printed without a kind field.
    if "algorithm" in obj and "processes" in obj:
        return EventKind.SUMMARY.value
    return EventKind.RAW.value


def _resolve_pid(obj: Mapping[str, Any], nested: Mapping[str, Any]) -> Pid | None:
    value = _first(obj, nested, _PID_KEYS)
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return IDLE_PID if value < 0 else value
    if isinstance(value, float) and value.is_integer():
        return IDLE_PID if value < 0 else int(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lower() in _IDLE_MARKERS:
            return IDLE_PID
        try:
            number = int(text)
        except ValueError:
            return text
        return IDLE_PID if number < 0 else number
    return None


def _first(obj: Mapping[str, Any], nested: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if obj.get(key) is not None:
            return obj[key]
    for key in keys:
        if nested.get(key) is not None:
            return nested[key]
    return None


def _as_int(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _as_tick(value: object) -> int | None:
    tick = _as_int(value)
    if tick is None or tick < 0:
        return None
    return tick
