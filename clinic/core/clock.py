"""Time source shared by expiry checks."""

from __future__ import annotations

import time
from typing import Callable

Clock = Callable[[], float]


def system_clock() -> float:
    """Return current UNIX time in seconds."""
    return time.time()


def now_ts(clock: Clock) -> int:
    """Return clock reading truncated to whole seconds."""
    return int(clock())
