"""Environment parsing helpers."""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional


def env_str(name: str, environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Return a stripped environment value, or None when unset or blank."""

    source = os.environ if environ is None else environ
    value = source.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def int_value(value: Any, default: Optional[int]) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
