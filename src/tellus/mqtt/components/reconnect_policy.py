"""
Reconnect Policy Module

Decides how long to wait before each automatic reconnection attempt. The
session state machine is the only component that schedules retries; the
transport never reconnects on its own.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Delay schedule for automatic reconnection.

    Attributes:
        interval: Delay before the first attempt (seconds)
        backoff: Multiplier applied for each further attempt (1.0 = fixed interval)
        max_interval: Upper bound on any single delay (seconds)
        max_attempts: Give up after this many consecutive attempts (None = never)
    """
    interval: float = 2.0
    backoff: float = 1.0
    max_interval: float = 60.0
    max_attempts: Optional[int] = None

    def __post_init__(self):
        if self.interval <= 0:
            raise ValueError(f"Reconnect interval must be positive, got {self.interval}")
        if self.backoff < 1.0:
            raise ValueError(f"Reconnect backoff must be >= 1.0, got {self.backoff}")
        if self.max_interval < self.interval:
            raise ValueError("Reconnect max_interval must not be smaller than interval")
        if self.max_attempts is not None and self.max_attempts < 0:
            raise ValueError("Reconnect max_attempts must be None or >= 0")

    def allows(self, attempt: int) -> bool:
        """Whether attempt number ``attempt`` (1-based) may be made."""
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """Delay before attempt number ``attempt`` (1-based)."""
        try:
            delay = self.interval * (self.backoff ** max(attempt - 1, 0))
        except OverflowError:
            return self.max_interval
        return min(delay, self.max_interval)
