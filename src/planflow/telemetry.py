"""Structured activity events emitted for plan mutations and evaluations."""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Mapping

from .memory.schema import utc_now

ACTIVITY_LOGGER = logging.getLogger("planflow.activity")


def _serialise_event_value(value: Any) -> Any:
    """Convert event payload values into JSON-friendly representations."""
    if isinstance(value, Enum):
        return _serialise_event_value(value.value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, Path):
        return value.as_posix()
    if isinstance(value, (list, tuple, set)):
        return [_serialise_event_value(item) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _serialise_event_value(child) for key, child in value.items()}
    return str(value)


def emit_activity(event: str, plan_id: str, **fields: Any) -> None:
    """Log one compact JSON line describing a plan activity."""
    if not ACTIVITY_LOGGER.isEnabledFor(logging.INFO):
        return
    payload: dict[str, Any] = {
        "event": event,
        "timestamp": utc_now().isoformat(),
        "plan_id": plan_id,
    }
    for key, value in fields.items():
        payload[key] = _serialise_event_value(value)
    try:
        message = json.dumps(payload, separators=(",", ":"), ensure_ascii=True)
    except (TypeError, ValueError):
        fallback = {key: str(value) for key, value in payload.items()}
        message = json.dumps(fallback, separators=(",", ":"), ensure_ascii=True)
    ACTIVITY_LOGGER.info(message)


__all__ = ["ACTIVITY_LOGGER", "emit_activity"]
