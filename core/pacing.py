"""
Pacing Policy - randomized waits between browser actions.

Every navigation or interaction that could look automated is preceded or
followed by one of these waits.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class PacingPolicy:
    """
    Uniform random delays in [min, max) milliseconds.

    Call-specific bounds that are missing or non-positive fall back to the
    session defaults.
    """

    def __init__(
        self,
        min_delay_ms: int = 1000,
        max_delay_ms: int = 3000,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if min_delay_ms > max_delay_ms:
            raise ValueError(f"min_delay_ms ({min_delay_ms}) exceeds max_delay_ms ({max_delay_ms})")
        self.min_delay_ms = min_delay_ms
        self.max_delay_ms = max_delay_ms
        self._rng = rng or random.Random()
        self._sleep = sleep
        self.total_waited_ms = 0.0

    @classmethod
    def from_config(cls, config, **kwargs) -> "PacingPolicy":
        return cls(config.min_delay_ms, config.max_delay_ms, **kwargs)

    def next_delay_ms(self, min_ms: Optional[int] = None, max_ms: Optional[int] = None) -> float:
        """Pick a delay without waiting."""
        low = min_ms if min_ms and min_ms > 0 else self.min_delay_ms
        high = max_ms if max_ms and max_ms > 0 else self.max_delay_ms
        if high < low:
            high = low
        if high == low:
            return float(low)
        return low + self._rng.random() * (high - low)

    async def delay(self, min_ms: Optional[int] = None, max_ms: Optional[int] = None) -> float:
        """Wait for a random delay and return it in milliseconds."""
        delay_ms = self.next_delay_ms(min_ms, max_ms)
        self.total_waited_ms += delay_ms
        await self._sleep(delay_ms / 1000.0)
        return delay_ms
