"""Value coercion helpers shared by payload parsers and gate evaluators."""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any

MS_PER_DAY = 24 * 60 * 60 * 1000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat a naive datetime as UTC; convert an aware one to UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def resolve_now(now: datetime | None) -> datetime:
    return as_utc(now) if now is not None else utcnow()


def parse_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = datetime.fromisoformat(stripped.replace('Z', '+00:00'))
        except ValueError:
            return None
    else:
        return None
    return as_utc(parsed)


def isoformat_or_none(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def elapsed_ms(since: datetime, now: datetime) -> float:
    return (as_utc(now) - as_utc(since)).total_seconds() * 1000


def whole_days_since(value: datetime | None, now: datetime) -> int | None:
    if value is None:
        return None
    return math.floor(elapsed_ms(value, now) / MS_PER_DAY)


def float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        parsed = float(value)
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        try:
            parsed = float(stripped)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(parsed) or math.isinf(parsed):
        return None
    return parsed


def float_or_default(value: Any, default: float) -> float:
    parsed = float_or_none(value)
    if parsed is None:
        return default
    return parsed


def int_or_default(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return int(value)
    if isinstance(value, str):
        stripped = value.strip()
        if stripped:
            try:
                return int(stripped)
            except ValueError:
                return default
    return default


def bool_or_default(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {'1', 'true', 'yes', 'on'}:
            return True
        if normalized in {'0', 'false', 'no', 'off'}:
            return False
        return default
    return bool(value)


def clamp(value: float, lower: float, upper: float) -> float:
    return min(upper, max(lower, value))


def round_half_up(value: float) -> int:
    """Round halves away from zero for positive values (``Math.round`` semantics)."""

    return math.floor(value + 0.5)


def format_number(value: float | int) -> str:
    """Render a threshold the way operators configured it: ``50`` not ``50.0``."""

    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


__all__ = [
    'MS_PER_DAY',
    'as_utc',
    'bool_or_default',
    'clamp',
    'elapsed_ms',
    'float_or_default',
    'float_or_none',
    'format_number',
    'int_or_default',
    'isoformat_or_none',
    'parse_datetime',
    'resolve_now',
    'round_half_up',
    'utcnow',
    'whole_days_since',
]
