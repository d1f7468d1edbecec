"""Reconnect delay policies for the gateway session."""
from typing import Protocol


class ReconnectPolicy(Protocol):
    def next_delay(self, attempt: int) -> float:
        """Seconds to wait before reconnect ``attempt`` (1-based)."""
        ...


class FixedDelay:
    """Same delay every time."""

    def __init__(self, seconds: float = 3.0):
        self.seconds = seconds

    def next_delay(self, attempt: int) -> float:
        return self.seconds


class ExponentialBackoff:
    """base * factor ** (attempt - 1), capped at ``maximum``."""

    def __init__(self, base: float = 1.0, factor: float = 2.0, maximum: float = 60.0):
        self.base = base
        self.factor = factor
        self.maximum = maximum

    def next_delay(self, attempt: int) -> float:
        exponent = max(attempt - 1, 0)
        return min(self.base * (self.factor ** exponent), self.maximum)
