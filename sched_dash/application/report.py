"""Human-readable event descriptions and metric exports."""

from __future__ import annotations

import csv
import io
import json
from typing import Any, Iterable, Mapping

from sched_dash.domain.events import EventKind, SchedulerEvent
from sched_dash.domain.metrics import MetricsReport, ProcessMetrics
from sched_dash.domain.timeline import Timeline

_TRIVIAL_KINDS = frozenset({EventKind.TICK.value, EventKind.GANTT_SLICE.value})
_SIGNIFICANT_KINDS = frozenset(
    {
        EventKind.CONTEXT_SWITCH.value,
        EventKind.JOB_STARTED.value,
        EventKind.JOB_PREEMPTED.value,
        EventKind.JOB_RESUMED.value,
        EventKind.JOB_FINISHED.value,
        EventKind.STARVATION_WARNING.value,
        EventKind.JOB_ARRIVED.value,
    }
)

_COLUMNS = ("PID", "Arrival", "Burst", "Start", "Completion", "Waiting", "Turnaround", "Response")


def is_trivial_event(event: SchedulerEvent) -> bool:
    """Tick and slice events; hidden by default in event lists."""
    return event.kind in _TRIVIAL_KINDS


def is_significant_event(event: SchedulerEvent) -> bool:
    return event.kind in _SIGNIFICANT_KINDS


def format_tick(tick: int | None) -> str:
    return "T-" if tick is None else f"T{tick}"


def describe_event(event: SchedulerEvent) -> str:
    kind = event.kind
    pid = "IDLE" if event.is_idle else event.pid

    if kind == EventKind.RAW.value:
        return event.text or ""
    if kind == EventKind.CONTEXT_SWITCH.value:
        return f"Context switch -> PID {pid}"
    if kind == EventKind.JOB_STARTED.value:
        return f"Process {pid} started (Priority: {_or_na(event.priority)})"
    if kind == EventKind.JOB_PREEMPTED.value:
        return f"Process {pid} preempted (Remaining: {_or_na(event.remaining)})"
    if kind == EventKind.JOB_RESUMED.value:
        return f"Process {pid} resumed (Remaining: {_or_na(event.remaining)})"
    if kind == EventKind.JOB_FINISHED.value:
        return f"Process {pid} completed"
    if kind == EventKind.JOB_ARRIVED.value:
        return f"Process {pid} arrived (Burst: {_or_na(event.burst)})"
    if kind == EventKind.STARVATION_WARNING.value:
        wait_time = event.extra.get("wait_time")
        if wait_time is None and isinstance(event.extra.get("data"), Mapping):
            wait_time = event.extra["data"].get("wait_time")
        return f"Starvation warning: Process {pid} waiting for {_or_na(wait_time)} ticks"
    if kind == EventKind.TICK.value:
        return f"Tick {event.tick if event.tick is not None else '?'}"
    if kind == EventKind.GANTT_SLICE.value:
        remaining = event.remaining if event.remaining is not None else "?"
        return f"Running: PID {pid} (Remaining: {remaining})"
    if kind == EventKind.SUMMARY.value:
        algorithm = event.extra.get("algorithm", "unknown")
        return f"Algorithm: {algorithm} - {len(summary_rows(event))} processes completed"
    return f"Event: {kind}"


def filter_events(
    events: Iterable[SchedulerEvent],
    *,
    hide_trivial: bool = False,
    kinds: Iterable[str] | None = None,
    query: str = "",
) -> list[SchedulerEvent]:
    """Event list filtering: trivial-kind hiding, kind whitelist, text search."""
    wanted = frozenset(kinds) if kinds else None
    needle = query.strip().lower()
    selected: list[SchedulerEvent] = []
    for event in events:
        if hide_trivial and is_trivial_event(event):
            continue
        if wanted is not None and event.kind not in wanted:
            continue
        if needle:
            haystack = describe_event(event).lower() + json.dumps(event.to_dict(), default=str).lower()
            if needle not in haystack:
                continue
        selected.append(event)
    return selected


def summary_rows(event: SchedulerEvent) -> list[dict[str, Any]]:
    """Per-process rows from the scheduler's own terminal summary payload."""
    processes = event.extra.get("processes")
    rows: list[dict[str, Any]] = []
    if isinstance(processes, list):
        for proc in processes:
            if not isinstance(proc, Mapping):
                continue
            rows.append(
                {
                    "pid": proc.get("pid"),
                    "arrival": proc.get("arrival"),
                    "burst": proc.get("burst"),
                    "start": proc.get("start"),
                    "finish": proc.get("finish"),
                    "waiting": proc.get("waiting"),
                    "turnaround": proc.get("turnaround"),
                    "response": proc.get("response"),
                    "priority": proc.get("priority"),
                }
            )
    elif isinstance(processes, Mapping):
        # Older builds keyed the summary by pid with *_time field names.
        for pid, proc in processes.items():
            if not isinstance(proc, Mapping):
                continue
            rows.append(
                {
                    "pid": int(pid) if str(pid).isdigit() else pid,
                    "arrival": proc.get("arrival_time"),
                    "burst": proc.get("burst_time"),
                    "start": proc.get("start_time"),
                    "finish": proc.get("completion_time"),
                    "waiting": proc.get("waiting_time"),
                    "turnaround": proc.get("turnaround_time"),
                    "response": proc.get("response_time"),
                    "priority": proc.get("priority"),
                }
            )
    return rows


def metrics_to_csv(report: MetricsReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(_COLUMNS)
    for metrics in report.processes.values():
        writer.writerow(_row(metrics))
    averages = report.averages_all
    writer.writerow(
        ["AVERAGE", "", "", "", "", f"{averages.waiting:.2f}", f"{averages.turnaround:.2f}", f"{averages.response:.2f}"]
    )
    return buffer.getvalue()


def metrics_to_markdown(report: MetricsReport) -> str:
    lines = [
        "| " + " | ".join(_COLUMNS) + " |",
        "|" + "|".join("---" for _ in _COLUMNS) + "|",
    ]
    for metrics in report.processes.values():
        lines.append("| " + " | ".join(_row(metrics)) + " |")
    averages = report.averages_all
    lines.append(
        f"| **AVERAGE** | - | - | - | - | **{averages.waiting:.2f}** | "
        f"**{averages.turnaround:.2f}** | **{averages.response:.2f}** |"
    )
    return "\n".join(lines) + "\n"


def metrics_to_json(report: MetricsReport, timeline: Timeline | None = None) -> str:
    payload: dict[str, Any] = {"metrics": report.to_dict()}
    if timeline is not None:
        payload["timeline"] = timeline.to_dict()
    return json.dumps(payload, indent=2, sort_keys=True)


def format_metrics_table(report: MetricsReport, timeline: Timeline | None = None) -> str:
    """Fixed-width console table with an AVERAGE row and optional CPU stats."""
    lines = ["=" * 80]
    if timeline is not None:
        stats = timeline.stats
        lines.append(
            f"Total Time: {stats.total_time} | Idle: {stats.idle_time} | "
            f"CPU: {stats.cpu_utilization_percent:.1f}% | "
            f"Context Switches: {stats.context_switches}"
        )
        lines.append("")
    lines.append(
        f"  {'PID':<8} {'Arrival':>7} {'Burst':>6} {'Start':>6} {'Finish':>6} "
        f"{'Waiting':>8} {'Turnaround':>10} {'Response':>8}"
    )
    lines.append("  " + "-" * 68)
    for metrics in report.processes.values():
        lines.append(
            f"  {str(metrics.pid):<8} {metrics.arrival:>7} {metrics.burst_accumulated:>6} "
            f"{_dash(metrics.start_time):>6} {_dash(metrics.finish_time):>6} "
            f"{metrics.waiting:>8} {metrics.turnaround:>10} {_dash(metrics.response):>8}"
        )
    averages = report.averages_all
    lines.append("  " + "-" * 68)
    lines.append(
        f"  {'AVERAGE':<8} {'':>7} {'':>6} {'':>6} {'':>6} "
        f"{averages.waiting:>8.2f} {averages.turnaround:>10.2f} {averages.response:>8.2f}"
    )
    lines.append("=" * 80)
    return "\n".join(lines)


def _row(metrics: ProcessMetrics) -> list[str]:
    return [
        str(metrics.pid),
        str(metrics.arrival),
        str(metrics.burst_accumulated),
        _dash(metrics.start_time),
        _dash(metrics.finish_time),
        str(metrics.waiting),
        str(metrics.turnaround),
        _dash(metrics.response),
    ]


def _dash(value: int | None) -> str:
    return "-" if value is None else str(value)


def _or_na(value: object) -> str:
    return "N/A" if value is None else str(value)
