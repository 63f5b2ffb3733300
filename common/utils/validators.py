from datetime import datetime
from typing import Any, Optional
from .clock import to_naive_utc


def ensure_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"{field} must be a positive integer")
    return value


def ensure_non_negative_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{field} must be a non-negative integer")
    return value


def optional_non_negative_int(value: Any, field: str) -> Optional[int]:
    if value is None:
        return None
    return ensure_non_negative_int(value, field)


def ensure_non_empty_str(value: Any, field: str, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{field} is required")
    v = value.strip()
    if max_length is not None and len(v) > max_length:
        raise ValueError(f"{field} must be at most {max_length} characters")
    return v


def parse_datetime(value: Any, field: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` suffix allowed) into naive UTC."""
    if isinstance(value, datetime):
        return to_naive_utc(value)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid date format for {field}")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError:
        raise ValueError(f"Invalid date format for {field}") from None
