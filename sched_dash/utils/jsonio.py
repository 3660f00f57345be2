from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def write_json_atomic(path: Path, payload: Any) -> None:
    serialized = json.dumps(payload, indent=2, sort_keys=True)
    temp_path = path.with_suffix(f"{path.suffix}.tmp")
    temp_path.write_text(serialized, encoding="utf-8")
    temp_path.replace(path)


def read_json_object(path: Path) -> dict[str, Any] | None:
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    return data
