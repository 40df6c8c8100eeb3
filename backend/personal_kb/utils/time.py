"""Time helpers."""

from __future__ import annotations

import time

DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Return current timestamp in milliseconds."""
    return int(time.time() * 1000)


def days_since(timestamp_ms: int | float, now: int | float | None = None) -> float:
    """Days elapsed since ``timestamp_ms``; future timestamps count as zero."""
    current = now_ms() if now is None else now
    return max(0.0, (current - timestamp_ms) / DAY_MS)
