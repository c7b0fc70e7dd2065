from __future__ import annotations

import logging
import time
from typing import Callable

from workforce_summary.errors import CircuitOpenError

logger = logging.getLogger("workforce_summary.circuit")


class CircuitBreaker:
    """Time-boxed refusal to call an upstream after it reported quota exhaustion."""

    def __init__(
        self,
        source: str,
        *,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.source = source
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._opened_at: float | None = None

    def remaining_seconds(self) -> float:
        if self._opened_at is None:
            return 0.0
        remaining = self.cooldown_seconds - (self._clock() - self._opened_at)
        if remaining <= 0:
            self._opened_at = None
            logger.info("circuit_closed", extra={"source": self.source})
            return 0.0
        return remaining

    @property
    def is_open(self) -> bool:
        return self.remaining_seconds() > 0

    def check(self) -> None:
        remaining = self.remaining_seconds()
        if remaining > 0:
            raise CircuitOpenError(self.source, remaining)

    def trip(self) -> None:
        self._opened_at = self._clock()
        logger.error(
            "circuit_opened",
            extra={"source": self.source, "cooldown_seconds": self.cooldown_seconds},
        )

    def reset(self) -> None:
        self._opened_at = None
