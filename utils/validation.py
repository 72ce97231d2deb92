"""Helpers for turning Pydantic validation failures into short messages."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List


def format_validation_errors(errors: Iterable[Dict[str, Any]]) -> List[str]:
    """Convert Pydantic error dicts into concise bullet strings."""

    messages: List[str] = []
    for issue in errors:
        location = ".".join(str(part) for part in issue.get("loc", ()) if part != "body")
        if location:
            messages.append(f"{location}: {issue['msg']}")
        else:
            messages.append(issue["msg"])
    return messages
