"""Configuration loading for the dashboard host."""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass
from pathlib import Path

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True, slots=True)
class DashboardConfig:
    """Runtime configuration for the dashboard service and its supervisor."""

    host: str = "127.0.0.1"
    port: int = 8780
    data_dir: str = ".sched_dash"
    scheduler_command: tuple[str, ...] = ("scheduler",)
    subscriber_buffer: int = 256
    playback_period_seconds: float = 1.0
    stop_grace_seconds: float = 5.0
    log_level: str = "INFO"
    env_file: str = ".env"

    @property
    def base_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def work_dir(self) -> Path:
        """Directory receiving the generated ``run-<id>.json`` config files."""
        return Path(self.data_dir) / "configs"


def load_dashboard_config(env_file: str = ".env") -> DashboardConfig:
    """Load dashboard config from env file with safe parsing defaults.

    ``DASH_*`` variables already set in the process environment win over
    the file.
    """

    env = _parse_env_file(env_file)
    env.update({key: value for key, value in os.environ.items() if key.startswith("DASH_")})

    host = env.get("DASH_HOST", "127.0.0.1").strip() or "127.0.0.1"
    port = _env_int(env, "DASH_PORT", default=8780, minimum=1)
    data_dir = env.get("DASH_DATA_DIR", ".sched_dash").strip() or ".sched_dash"
    scheduler_command = _env_command(env, "DASH_SCHEDULER_CMD", default=("scheduler",))
    subscriber_buffer = _env_int(env, "DASH_SUBSCRIBER_BUFFER", default=256, minimum=1)
    playback_period = _env_float(env, "DASH_PLAYBACK_PERIOD", default=1.0)
    stop_grace = _env_float(env, "DASH_STOP_GRACE", default=5.0)
    log_level = env.get("DASH_LOG_LEVEL", "INFO").strip().upper()
    if log_level not in _LOG_LEVELS:
        log_level = "INFO"

    return DashboardConfig(
        host=host,
        port=port,
        data_dir=data_dir,
        scheduler_command=scheduler_command,
        subscriber_buffer=subscriber_buffer,
        playback_period_seconds=playback_period,
        stop_grace_seconds=stop_grace,
        log_level=log_level,
        env_file=env_file,
    )


def _parse_env_file(path: str) -> dict[str, str]:
    env_path = Path(path)
    if not env_path.exists():
        return {}

    env: dict[str, str] = {}
    for line in env_path.read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if not text or text.startswith("#"):
            continue
        if text.startswith("export "):
            text = text[7:].strip()
        if "=" not in text:
            continue

        key, value = text.split("=", 1)
        key = key.strip()
        value = value.strip()

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]

        if key:
            env[key] = value

    return env


def _env_int(env: dict[str, str], key: str, default: int, minimum: int) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    if parsed < minimum:
        return default
    return parsed


def _env_float(env: dict[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        parsed = float(raw)
    except ValueError:
        return default
    if parsed <= 0:
        return default
    return parsed


def _env_command(env: dict[str, str], key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        words = shlex.split(raw)
    except ValueError:
        return default
    return tuple(words) or default
