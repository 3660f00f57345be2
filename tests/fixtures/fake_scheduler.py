#!/usr/bin/env python3
"""Stand-in for the external scheduler binary used by supervisor tests.

Without ``--lines`` it runs first-come-first-served over the config's jobs and
prints the event stream a real scheduler build would, ending with a summary.
"""

from __future__ import annotations

import argparse
import json
import sys
import time


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Fake CPU scheduler")
    parser.add_argument("--config", required=True)
    parser.add_argument("--lines", help="File whose lines are echoed to stdout verbatim")
    parser.add_argument("--stderr", action="append", default=[], help="Line to print on stderr")
    parser.add_argument("--exit-code", type=int, default=0)
    parser.add_argument("--sleep", type=float, default=0.0, help="Seconds to wait before exiting")
    parser.add_argument("--no-summary", action="store_true")
    return parser.parse_args()


def emit(payload: dict) -> None:
    print(json.dumps(payload), flush=True)


def run_fcfs(config: dict, *, with_summary: bool) -> None:
    jobs = sorted(config.get("jobs") or [], key=lambda job: (job.get("arrival", 0), job["pid"]))
    tick = 0
    rows = []
    for job in jobs:
        emit({"type": "job_arrived", "pid": job["pid"], "tick": job.get("arrival", 0), "burst": job["burst"]})
    for job in jobs:
        arrival = job.get("arrival", 0)
        tick = max(tick, arrival)
        start = tick
        emit({"type": "job_started", "pid": job["pid"], "tick": tick, "priority": job.get("priority", 0)})
        for offset in range(job["burst"]):
            emit(
                {
                    "type": "gantt_slice",
                    "pid": job["pid"],
                    "tick": tick + offset,
                    "remaining": job["burst"] - offset - 1,
                }
            )
        tick += job["burst"]
        emit({"type": "job_finished", "pid": job["pid"], "tick": tick})
        rows.append(
            {
                "pid": job["pid"],
                "arrival": arrival,
                "burst": job["burst"],
                "start": start,
                "finish": tick,
                "waiting": tick - arrival - job["burst"],
                "turnaround": tick - arrival,
                "response": start - arrival,
            }
        )
    if with_summary:
        emit({"algorithm": config.get("mode", "fcfs"), "processes": rows})


def main() -> None:
    args = parse_args()
    with open(args.config, encoding="utf-8") as handle:
        config = json.load(handle)

    for line in args.stderr:
        print(line, file=sys.stderr, flush=True)

    if args.lines:
        with open(args.lines, encoding="utf-8") as handle:
            for line in handle:
                sys.stdout.write(line)
        sys.stdout.flush()
    else:
        run_fcfs(config, with_summary=not args.no_summary)

    if args.sleep:
        time.sleep(args.sleep)
    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
