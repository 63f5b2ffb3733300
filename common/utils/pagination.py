from typing import Any, Tuple


DEFAULT_LIMIT = 20
MAX_LIMIT = 100
MAX_OFFSET = 10000


def normalize_window(limit: Any, offset: Any, max_limit: int = MAX_LIMIT) -> Tuple[int, int]:
    """Validate limit/offset query values, returning ints with defaults applied."""
    lim = DEFAULT_LIMIT
    off = 0
    if limit not in (None, ""):
        try:
            lim = int(limit)
        except (TypeError, ValueError):
            raise ValueError("limit must be a positive integer") from None
        if lim <= 0 or lim > max_limit:
            raise ValueError(f"limit must be between 1 and {max_limit}")
    if offset not in (None, ""):
        try:
            off = int(offset)
        except (TypeError, ValueError):
            raise ValueError("offset must be an integer") from None
        if off < 0:
            raise ValueError("offset must be a non-negative integer")
        if off > MAX_OFFSET:
            raise ValueError(f"offset cannot exceed {MAX_OFFSET}")
    return lim, off


def page_info(total: int, limit: int, offset: int) -> dict:
    return {
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + limit < total,
    }
