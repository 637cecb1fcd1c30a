"""Exponential back-off policy and a retry loop driven by it."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

from e2ekit.shell import get_env_int

T = TypeVar("T")

#: Multiplier for maximum timeouts, overridable with the TIMEOUT_FACTOR variable.
TIMEOUT_FACTOR = get_env_int("TIMEOUT_FACTOR", 3)


class Permanent(Exception):
    """Wraps an error that must stop a retry loop at once."""

    def __init__(self, error: BaseException):
        super().__init__(str(error))
        self.error = error


@dataclass
class ExponentialBackOff:
    """Randomised exponential back-off; durations are in seconds.

    A ``max_elapsed_time`` of zero means the policy never gives up.
    """

    initial_interval: float = 0.5
    randomization_factor: float = 0.5
    multiplier: float = 1.5
    max_interval: float = 60.0
    max_elapsed_time: float = 900.0
    clock: Callable[[], float] = field(default=time.monotonic, repr=False, compare=False)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        """Restart the interval sequence and the elapsed-time measurement."""
        self._current_interval = self.initial_interval
        self._start = self.clock()

    def elapsed(self) -> float:
        """Seconds since the policy was created or last reset."""
        return self.clock() - self._start

    def _increment_interval(self) -> None:
        if self._current_interval >= self.max_interval / self.multiplier:
            self._current_interval = self.max_interval
        else:
            self._current_interval *= self.multiplier

    def next_backoff(self) -> float | None:
        """Return the next wait in seconds, or None once time has run out."""
        elapsed = self.elapsed()
        delta = self.randomization_factor * self._current_interval
        low = self._current_interval - delta
        high = self._current_interval + delta
        delay = low + random.random() * (high - low)
        self._increment_interval()
        if self.max_elapsed_time != 0 and elapsed + delay > self.max_elapsed_time:
            return None
        return delay


def get_exponential_backoff(max_elapsed: float) -> ExponentialBackOff:
    """Return the policy used across the tool, giving up after ``max_elapsed`` seconds."""
    return ExponentialBackOff(
        initial_interval=10.0,
        randomization_factor=0.5,
        multiplier=2.0,
        max_interval=30.0,
        max_elapsed_time=max_elapsed,
    )


def retry(operation: Callable[[], T], policy: ExponentialBackOff) -> T:
    """Call ``operation`` until it returns, waiting as ``policy`` says between failures.

    Raising :class:`Permanent` stops at once and re-raises the wrapped error;
    when the policy runs out of time the last error is re-raised.
    """
    policy.reset()
    while True:
        try:
            return operation()
        except Permanent as exc:
            raise exc.error from None
        except Exception:
            delay = policy.next_backoff()
            if delay is None:
                raise
            policy.sleep(delay)