import math
import time
from typing import Optional


IDLE = 'idle'
COUNTING = 'counting'
EXPIRED = 'expired'


def server_now() -> float:
    """Trusted clock for start times and expiry checks (epoch seconds)."""
    return time.time()


def remaining_seconds(start_time: float, duration: int, now: float) -> int:
    """Whole seconds left in a round that started at ``start_time``.

    A start time slightly in the future (clock skew) counts as zero elapsed.
    The result goes to zero or below once the round is over.
    """
    elapsed = math.floor(now - start_time)
    return duration - max(0, elapsed)


def is_expired(start_time: Optional[float], duration: int, now: float) -> bool:
    if start_time is None:
        return False
    return remaining_seconds(start_time, duration, now) <= 0


class Countdown:
    """idle -> counting -> expired, driven by snapshots and 1s ticks."""

    def __init__(self, duration: int):
        self.duration = duration
        self.state = IDLE
        self.start_time: Optional[float] = None
        self.time_left = duration

    def observe(self, snapshot: dict) -> None:
        if self.state != IDLE:
            return
        if snapshot.get('status') == 'active' and snapshot.get('start_time') is not None:
            self.start_time = float(snapshot['start_time'])
            self.state = COUNTING

    def tick(self, now: float) -> bool:
        """Advance the clock; True exactly once, on the tick that expires."""
        if self.state != COUNTING:
            return False
        remaining = remaining_seconds(self.start_time, self.duration, now)
        if remaining <= 0:
            self.time_left = 0
            self.state = EXPIRED
            return True
        self.time_left = remaining
        return False

    def rearm(self) -> None:
        if self.state == EXPIRED:
            self.state = COUNTING
