"""Shared utility functions used across CryptoProspect modules."""
from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def to_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False)


def utc_now() -> datetime:
    return datetime.now(UTC)


def to_float(value: Any) -> float | None:
    """Coerce a provider numeric (number or numeric string) to float, None if missing."""
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
