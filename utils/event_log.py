"""Append-only JSON-lines audit log."""

from __future__ import annotations

import json
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional


class EventLog:
    """Structured logger that appends one JSON object per line."""

    def __init__(self, path: Optional[Path]) -> None:
        self.path = path
        self._lock = threading.Lock()

    def log(self, event: str, *, extra: Optional[Dict[str, Any]] = None) -> None:
        if self.path is None:
            return
        timestamp = datetime.now(timezone.utc).replace(microsecond=0).isoformat()
        payload: Dict[str, Any] = {"event": event}
        if extra:
            payload.update(extra)
        line = json.dumps({"timestamp": timestamp, **payload}, ensure_ascii=False, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
