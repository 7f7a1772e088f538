"""Monotonic deadlines bounding network phases."""

from __future__ import annotations

import time
from typing import Callable

from .errors import DeadlineExceededError


class Deadline:
    """A point in time after which an operation must not start."""

    def __init__(self, timeout: float, *, clock: Callable[[], float] = time.monotonic) -> None:
        self.timeout = timeout
        self._clock = clock
        self._expires_at = clock() + timeout

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self._expires_at

    def check(self, operation: str) -> None:
        """Raise :class:`DeadlineExceededError` if the deadline has passed."""
        if self.expired():
            raise DeadlineExceededError(
                f"{operation}: deadline of {self.timeout:.3f}s exceeded"
            )
