"""Decimal helpers for exact, reproducible points.

Points are carried as ``Decimal`` end to end:
1. Factors are converted once, from their string form
2. Multiplication keeps full precision
3. Only the stored product is rounded (two places, ROUND_HALF_EVEN)

Floats appear only at the storage boundary and are converted back with
``from_stored`` before any arithmetic.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from .types import DECIMAL_PLACES, ZERO, ValidationError

CENTS = Decimal(100)


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Convert a value to Decimal with validation.

    Args:
        value: Value to convert (int, float, str, Decimal)
        name: Name for error messages

    Returns:
        Decimal representation

    Raises:
        ValidationError: If value cannot be converted or is not finite
    """
    if value is None:
        raise ValidationError(f"{name} is None")
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be numeric, got bool")

    try:
        d = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"Cannot convert {name}={value!r} to Decimal: {e}")

    if d.is_nan():
        raise ValidationError(f"{name} is NaN")
    if d.is_infinite():
        raise ValidationError(f"{name} is infinite")
    return d


def round_decimal(value: Decimal, places: int = DECIMAL_PLACES) -> Decimal:
    """Round a Decimal to specified places using ROUND_HALF_EVEN."""
    quantize_str = "1" if places == 0 else "0." + "0" * places
    return value.quantize(Decimal(quantize_str), rounding=ROUND_HALF_EVEN)


def round2(value: Decimal) -> Decimal:
    return round_decimal(value, 2)


def from_stored(value: Any) -> Decimal:
    """Read a REAL column back as a two-place Decimal."""
    if value is None:
        return round2(ZERO)
    return round2(to_decimal(value, "stored"))


def to_cents(value: Decimal) -> int:
    """Two-place points as integer hundredths, for exact cache increments."""
    return int(round2(value) * CENTS)


def from_cents(value: Any) -> Decimal:
    return round2(Decimal(int(round(float(value)))) / CENTS)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (sqlite drops tzinfo) and normalise aware ones."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_for_hash(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, datetime):
        return as_utc(obj).isoformat()
    elif isinstance(obj, dict):
        return {str(k): _serialize_for_hash(v) for k, v in sorted(obj.items(), key=lambda kv: str(kv[0]))}
    elif isinstance(obj, (list, tuple)):
        return [_serialize_for_hash(v) for v in obj]
    elif hasattr(obj, "value") and isinstance(getattr(obj, "value"), str):
        return obj.value
    else:
        return obj


def compute_hash(data: dict) -> str:
    """Compute a deterministic SHA256 hash of a dictionary."""
    serialized = _serialize_for_hash(data)
    canonical = json.dumps(serialized, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


__all__ = [
    "CENTS",
    "to_decimal",
    "round_decimal",
    "round2",
    "from_stored",
    "to_cents",
    "from_cents",
    "as_utc",
    "utcnow",
    "compute_hash",
]
