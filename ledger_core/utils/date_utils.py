"""Date manipulation utilities"""

import time
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the storage convention)"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``time.monotonic()`` reading"""
    return int((time.monotonic() - start) * 1000)
