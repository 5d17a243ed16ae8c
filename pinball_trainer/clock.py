from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Monotonic clock abstraction.

    Core logic depends on this interface rather than calling real time directly.
    """

    def now(self) -> float:
        """Return monotonic seconds."""


class RealClock:
    """Production clock backed by time.monotonic()."""

    def now(self) -> float:
        return time.monotonic()


class FeedbackTimer:
    """One-shot, cancellable deadline identified by a token.

    Each ``arm`` issues a new token. A timer event carrying an older token, or
    arriving after ``cancel``, is stale and must be ignored by the receiver.
    """

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._token = 0
        self._deadline_s: float | None = None

    @property
    def token(self) -> int:
        return self._token

    @property
    def armed(self) -> bool:
        return self._deadline_s is not None

    def arm(self, duration_s: float) -> int:
        self._token += 1
        self._deadline_s = self._clock.now() + max(0.0, float(duration_s))
        return self._token

    def cancel(self) -> None:
        self._token += 1
        self._deadline_s = None

    def is_current(self, token: int) -> bool:
        return self._deadline_s is not None and token == self._token

    def remaining_s(self) -> float | None:
        if self._deadline_s is None:
            return None
        return max(0.0, self._deadline_s - self._clock.now())

    def expired(self) -> bool:
        remaining = self.remaining_s()
        return remaining is not None and remaining <= 0.0
