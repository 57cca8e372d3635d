"""JSON helpers shared by the WebSocket hub and the session database."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

LOGGER = logging.getLogger(__name__)


def sanitize_value(value: Any) -> Any:
    """Replace non-finite floats with ``None``; numpy scalars become Python types."""
    if hasattr(value, "item") and not isinstance(value, (dict, list, tuple, str, bytes)):
        value = value.item()
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, dict):
        return {k: sanitize_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


def safe_json_dumps(value: Any) -> str:
    return json.dumps(sanitize_value(value), ensure_ascii=False, allow_nan=False)


def safe_json_loads(value: str | None, *, context: str) -> Any | None:
    """Parse *value*, logging and returning ``None`` when it is empty or corrupt."""
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        LOGGER.warning("Skipping invalid JSON payload while reading %s", context, exc_info=True)
        return None
