"""Wall-clock helpers expressed in epoch milliseconds."""

from __future__ import annotations

import time
from collections.abc import Callable

Clock = Callable[[], int]
"""Zero-argument callable returning the current epoch time in milliseconds."""


def epoch_ms() -> int:
    return time.time_ns() // 1_000_000
