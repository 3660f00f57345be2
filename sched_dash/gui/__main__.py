"""CLI entrypoint for the dashboard host."""

from __future__ import annotations

import argparse
import shlex
from dataclasses import replace

from sched_dash.gui.config import load_dashboard_config
from sched_dash.gui.host import DashboardHost


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the scheduler dashboard service")
    parser.add_argument("--env-file", default=".env", help="Path to env file")
    parser.add_argument("--host", help="HTTP bind host")
    parser.add_argument("--port", type=int, help="HTTP bind port")
    parser.add_argument(
        "--data-dir",
        help="Directory for persisted runs, event logs and generated configs",
    )
    parser.add_argument(
        "--scheduler-cmd",
        help="Scheduler command line; --config <path> is appended per run",
    )
    parser.add_argument(
        "--subscriber-buffer",
        type=int,
        help="Envelopes buffered per live subscriber before it is disconnected",
    )
    parser.add_argument(
        "--playback-period",
        type=float,
        help="Seconds per tick at 1x playback speed",
    )
    parser.add_argument(
        "--stop-grace",
        type=float,
        help="Seconds to wait after terminate before killing a run",
    )
    parser.add_argument("--log-level", help="Logging level (DEBUG, INFO, ...)")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    config = load_dashboard_config(args.env_file)

    if args.host:
        config = replace(config, host=args.host)
    if args.port:
        config = replace(config, port=args.port)
    if args.data_dir:
        config = replace(config, data_dir=args.data_dir)
    if args.scheduler_cmd:
        config = replace(config, scheduler_command=tuple(shlex.split(args.scheduler_cmd)))
    if args.subscriber_buffer:
        config = replace(config, subscriber_buffer=args.subscriber_buffer)
    if args.playback_period:
        config = replace(config, playback_period_seconds=args.playback_period)
    if args.stop_grace:
        config = replace(config, stop_grace_seconds=args.stop_grace)
    if args.log_level:
        config = replace(config, log_level=args.log_level.upper())

    try:
        host = DashboardHost(config)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc
    try:
        host.start()
    except KeyboardInterrupt:
        pass
    finally:
        host.stop()


if __name__ == "__main__":
    main()
