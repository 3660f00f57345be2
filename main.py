#!/usr/bin/env python3
"""
Scheduler Run Replay - Offline Timeline and Metrics

Replays a captured scheduler event stream through the same normalizer and
reconstructors the dashboard uses, and prints the Gantt timeline plus
per-process metrics as they stood at a chosen tick.

Usage:
  python main.py CAPTURE [options]

CAPTURE is either raw scheduler stdout (one JSON object per line, other
lines are kept as raw events) or a stored ``events/<run_id>.jsonl`` log.
Use ``-`` to read from stdin.

Options:
  --until-tick N  Reconstruct only the events visible at tick N
  --format F      table (default), csv, markdown or json
  --events / --no-events
                  Print the event list before the metrics
  --all-events    Include tick and gantt_slice events in the event list
  --compare       Print the scheduler's own summary next to the replay
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Iterable, TextIO

from sched_dash.application.metrics import reconstruct_metrics
from sched_dash.application.playback import visible_events
from sched_dash.application.report import (
    describe_event,
    format_metrics_table,
    format_tick,
    is_trivial_event,
    metrics_to_csv,
    metrics_to_json,
    metrics_to_markdown,
    summary_rows,
)
from sched_dash.application.run_log import RunLog
from sched_dash.application.timeline import reconstruct_timeline
from sched_dash.domain.events import EventKind, SchedulerEvent
from sched_dash.domain.timeline import Timeline

REPLAY_RUN_ID = "replay"
FORMATS = ("table", "csv", "markdown", "json")


def load_capture(lines: Iterable[str], run_log: RunLog, run_id: str = REPLAY_RUN_ID) -> int:
    """Append every non-blank capture line to ``run_log``; returns the event count."""
    for line in lines:
        if not line.strip():
            continue
        run_log.append(run_id, _stored_event(line) or line)
    run_log.seal(run_id)
    return run_log.count(run_id)


def _stored_event(line: str) -> SchedulerEvent | None:
    """Decode a persisted ``{"run_id", "sequence", "tick", "event"}`` record."""
    try:
        record = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(record, dict) or "sequence" not in record:
        return None
    payload = record.get("event")
    if not isinstance(payload, dict):
        return None
    return SchedulerEvent.from_dict(payload)


def print_timeline(timeline: Timeline) -> None:
    print("\n--- Gantt Timeline ---")
    for segment in timeline.segments:
        label = "IDLE" if segment.is_idle else f"PID {segment.pid}"
        remaining = "" if segment.remaining_at_end is None else f" (remaining {segment.remaining_at_end})"
        print(f"  [{segment.start_tick:>5}, {segment.end_tick:>5})  {label}{remaining}")
    if timeline.running_pid is not None:
        print(f"  running: PID {timeline.running_pid}")


def print_events(events: list[SchedulerEvent], *, include_trivial: bool) -> None:
    print("\n--- Events ---")
    for event in events:
        if not include_trivial and is_trivial_event(event):
            continue
        print(f"  #{event.sequence:<5} {format_tick(event.tick):>6}  {describe_event(event)}")


def print_reported_summary(events: list[SchedulerEvent]) -> None:
    summaries = [event for event in events if event.kind == EventKind.SUMMARY.value]
    print("\n--- Scheduler Reported Summary ---")
    if not summaries:
        print("  (no summary event in capture)")
        return
    for row in summary_rows(summaries[-1]):
        print(
            f"  PID {row['pid']}: waiting={row['waiting']} "
            f"turnaround={row['turnaround']} response={row['response']}"
        )


def _open_capture(path: str) -> TextIO:
    if path == "-":
        return sys.stdin
    return open(path, encoding="utf-8")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Replay a captured scheduler event stream",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("capture", help="JSONL capture file, or - for stdin")
    parser.add_argument(
        "--until-tick",
        type=int,
        default=None,
        help="Reconstruct the run as it stood at this tick (default: end of capture)",
    )
    parser.add_argument(
        "--format",
        choices=FORMATS,
        default="table",
        help="Metrics output format (default: table)",
    )
    parser.add_argument(
        "--events",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Print the event list (default: off)",
    )
    parser.add_argument(
        "--all-events",
        action="store_true",
        help="Include tick and gantt_slice events in the event list",
    )
    parser.add_argument(
        "--compare",
        action="store_true",
        help="Print the scheduler's own summary for comparison",
    )
    args = parser.parse_args()

    if args.until_tick is not None and args.until_tick < 0:
        parser.error("--until-tick must be >= 0")

    run_log = RunLog()
    try:
        with _open_capture(args.capture) as handle:
            load_capture(handle, run_log)
    except OSError as exc:
        print(f"Cannot read capture {args.capture!r}: {exc}", file=sys.stderr)
        sys.exit(1)

    events = run_log.read(REPLAY_RUN_ID)
    if args.until_tick is not None:
        events = visible_events(events, args.until_tick)

    timeline = reconstruct_timeline(events)
    metrics = reconstruct_metrics(events)

    if args.format == "json":
        print(metrics_to_json(metrics, timeline))
        return
    if args.format == "csv":
        print(metrics_to_csv(metrics), end="")
        return
    if args.format == "markdown":
        print(metrics_to_markdown(metrics), end="")
        return

    if args.events:
        print_events(events, include_trivial=args.all_events)
    print_timeline(timeline)
    print()
    print(format_metrics_table(metrics, timeline))
    if args.compare:
        print_reported_summary(events)


if __name__ == "__main__":
    main()
