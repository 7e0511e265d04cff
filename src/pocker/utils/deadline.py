"""Deadline propagation for nested network calls."""

import time
from dataclasses import dataclass, field
from typing import Callable


@dataclass(frozen=True)
class Deadline:
    """
    An absolute point in time by which work must finish.

    A request creates one root deadline; every nested call derives its own
    timeout from it with ``limit()`` so inner timeouts never outlive outer
    ones and worst-case latency does not compound.
    """

    expires_at: float
    clock: Callable[[], float] = field(default=time.monotonic, compare=False, repr=False)

    @classmethod
    def after(cls, seconds: float, clock: Callable[[], float] = time.monotonic) -> "Deadline":
        """Deadline ``seconds`` from now."""
        return cls(expires_at=clock() + max(seconds, 0.0), clock=clock)

    def remaining(self) -> float:
        """Seconds left, never negative."""
        return max(self.expires_at - self.clock(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def limit(self, seconds: float) -> "Deadline":
        """The earlier of this deadline and one ``seconds`` from now."""
        return Deadline(
            expires_at=min(self.expires_at, self.clock() + max(seconds, 0.0)),
            clock=self.clock,
        )
