"""Local object storage for timetable uploads."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path, PurePath
from typing import Optional

from utils import io_utils


TIMETABLE_PREFIX = "timetables"


class FileStorageError(RuntimeError):
    """Raised when an upload cannot be stored."""


def _safe_filename(value: Optional[str]) -> str:
    name = PurePath(value or "").name.strip()
    cleaned = "".join(ch if ch.isalnum() or ch in {"-", "_", "."} else "-" for ch in name)
    cleaned = cleaned.strip("-.")
    return cleaned or "timetable"


class TimetableStorage:
    """Store timetable files and hand back a URL for them."""

    def __init__(self, base_dir: Path, *, url_prefix: str = "/files") -> None:
        self.base_dir = base_dir
        self.url_prefix = url_prefix.rstrip("/")

    def save(self, filename: Optional[str], content: bytes) -> str:
        if not content:
            raise FileStorageError("Timetable upload was empty.")
        timestamp = int(datetime.now(timezone.utc).timestamp() * 1000)
        name = f"{timestamp}-{_safe_filename(filename)}"
        target = self.base_dir / TIMETABLE_PREFIX / name
        try:
            io_utils.write_bytes(target, content)
        except OSError as exc:
            raise FileStorageError(f"Failed to store timetable: {exc}") from exc
        return f"{self.url_prefix}/{TIMETABLE_PREFIX}/{name}"

    def resolve(self, name: str) -> Optional[Path]:
        """Return the stored file for a URL name, or None if unknown."""

        if not name or _safe_filename(name) != name:
            return None
        path = self.base_dir / TIMETABLE_PREFIX / name
        return path if path.is_file() else None
