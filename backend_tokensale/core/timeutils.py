"""Unix-second timestamps; every persisted time in the project is an int of seconds since epoch (UTC)."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

SECONDS_PER_DAY = 86_400

Clock = Callable[[], int]


def now_ts() -> int:
    return int(time.time())


def whole_days_between(start_ts: int, end_ts: int) -> int:
    """floor((end - start) / 1 day); never negative."""
    return max(0, (end_ts - start_ts) // SECONDS_PER_DAY)


def iso(ts: int | None) -> str | None:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
