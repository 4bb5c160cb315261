# extengine/core/time.py
from __future__ import annotations

import datetime as dt
import time

__all__ = ["nowMonotonicMs", "nowMs", "nowIso"]



def nowMonotonicMs() -> int:
    """Returns the current monotonic time in milliseconds."""
    return int(time.perf_counter() * 1000)



def nowMs() -> int:
    return int(time.time() * 1000)



def nowIso() -> str:
    """UTC timestamp in ISO-8601 with millisecond precision and a trailing Z."""
    now = dt.datetime.now(dt.timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"
