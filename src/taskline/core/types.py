"""Type aliases used across taskline."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]  # epoch seconds; time.time in production


def utcnow(clock: Clock = time.time) -> datetime:
    return datetime.fromtimestamp(clock(), tz=timezone.utc)
