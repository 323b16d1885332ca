"""Bounded exponential backoff for gateway calls.

Formula: delay = base * (multiplier ^ (attempt - 1)), capped at max_delay,
with optional +/- jitter.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

import structlog

from orderdesk.infrastructure.config import settings
from orderdesk.infrastructure.payment_gateway import GatewayError

logger = structlog.get_logger()

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Retry policy for transient gateway errors.

    Attributes:
        max_attempts: Total attempts including the first call.
        base_delay_seconds: Delay before the second attempt.
        max_delay_seconds: Upper bound on any single delay.
        backoff_multiplier: Growth factor between attempts.
        jitter_factor: Fraction of the delay randomised either way.
        sleep: Awaitable sleep, replaced in tests.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.gateway_max_attempts,
            base_delay_seconds=settings.gateway_backoff_base_seconds,
            max_delay_seconds=settings.gateway_backoff_max_seconds,
        )

    def get_delay(self, attempt: int) -> float:
        """Delay to wait after the given 1-based failed attempt."""
        delay = self.base_delay_seconds * (self.backoff_multiplier ** (attempt - 1))
        delay = min(delay, self.max_delay_seconds)
        if self.jitter_factor > 0:
            jitter = delay * self.jitter_factor
            delay += random.uniform(-jitter, jitter)
        return max(0.0, delay)

    async def call(self, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Run ``func`` until it succeeds, fails permanently, or attempts run out.

        Only errors marked ``transient`` are retried; anything else propagates
        on the first occurrence.

        Args:
            operation: Name used in log events.
            func: Zero-argument coroutine factory.

        Returns:
            The result of the first successful call.

        Raises:
            GatewayError: The last transient error once attempts are exhausted,
                or the first permanent one.
        """
        attempt = 1
        while True:
            try:
                return await func()
            except GatewayError as e:
                if not e.transient or attempt >= self.max_attempts:
                    raise
                delay = self.get_delay(attempt)
                logger.warning(
                    "Transient gateway error, retrying",
                    operation=operation,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay=round(delay, 3),
                    error=str(e),
                )
                await self.sleep(delay)
                attempt += 1
