"""
Epoch-millisecond timestamps.

Fixes, history rows and geometry metadata all carry integer epoch-ms values; datetimes
only appear at the edges (CLI/API output) and are always UTC-aware.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(value: int) -> datetime:
    """Convert epoch milliseconds into a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(int(value) / 1000.0, tz=timezone.utc)
