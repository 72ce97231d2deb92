"""Helpers for reading and writing stored documents."""

import json
from pathlib import Path
from typing import Any


def read_json_file(path: Path) -> Any:
    """Load JSON content from disk."""

    if not path.exists():
        raise FileNotFoundError(f"JSON file not found: {path}")

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def write_bytes(path: Path, content: bytes) -> None:
    """Persist raw bytes to disk."""

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        handle.write(content)


def write_json(path: Path, payload: Any) -> None:
    """Persist JSON to disk with indentation for readability."""

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with tmp_path.open("w", encoding="utf-8") as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")
    tmp_path.replace(path)
