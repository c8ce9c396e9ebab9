"""Structured log events emitted by the web layer and the note repository."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

APP_EVENT = "APP_EVENT"
FILE_EVENT = "FILE_OP"

EVENT_LOGGER = logging.getLogger("marknote.events")


def flatten_context(*sources: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Merge *sources* left to right into one flat mapping of loggable values.

    ``None`` values are dropped, paths become strings and sequences are
    joined with commas.
    """

    merged: Dict[str, Any] = {}
    for source in sources:
        for key, value in (source or {}).items():
            if value is None:
                continue
            if isinstance(value, Path):
                value = str(value)
            elif isinstance(value, (list, tuple, set)):
                value = ", ".join(str(item) for item in value)
            merged[str(key)] = value
    return merged


def emit_event(
    event_type: str,
    message: str,
    *,
    context: Optional[Mapping[str, Any]] = None,
    correlation: Optional[Mapping[str, Any]] = None,
    duration_ms: Optional[float] = None,
    level: int = logging.INFO,
    logger: logging.Logger | logging.LoggerAdapter = EVENT_LOGGER,
) -> None:
    """Log ``[event_type] message key=value ...`` with the details attached as extras."""

    details = flatten_context(correlation, context)
    if duration_ms is not None:
        details["duration_ms"] = round(float(duration_ms), 2)
    summary = " ".join(f"{key}={value}" for key, value in details.items())
    text = f"[{event_type}] {message}"
    logger.log(
        level,
        f"{text} {summary}" if summary else text,
        extra={"event_type": event_type, "event_context": details},
    )


__all__ = ["APP_EVENT", "EVENT_LOGGER", "FILE_EVENT", "emit_event", "flatten_context"]
