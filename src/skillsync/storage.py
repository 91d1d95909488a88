from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from .client import SkillsyncError


def write_json_atomic(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)


def read_json(path: Path, *, default: Any = None) -> Any:
    """Read a JSON file, returning ``default`` when it does not exist."""
    if not path.exists():
        return default
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SkillsyncError(f"Invalid JSON in {path}: {e}") from e
