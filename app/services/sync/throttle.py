"""
Outbound Rate Limiting & Quota Accounting

Declared per-provider rate policies replace fixed sleeps between batches.
Policies use the `limits` notation already used for inbound API limits
(e.g. "100/minute", "25000/100 seconds") and a moving-window strategy.

Quota units are a caller-side estimate: Gmail does not report remaining
quota in its responses, so each call is charged a fixed cost.
"""
import asyncio
import logging
import time
from typing import Dict, Optional

from limits import parse
from limits.storage import MemoryStorage
from limits.strategies import MovingWindowRateLimiter

from app.core.config import settings
from app.core.errors import QuotaExceeded

logger = logging.getLogger(__name__)

# Gmail quota units per call
GMAIL_LIST_COST = 1
GMAIL_GET_COST = 5
GMAIL_SEND_COST = 100


class ProviderThrottle:
    """
    Moving-window limiter keyed by (provider, connection).

    acquire() waits until the window has room for `cost` units.
    """

    def __init__(self, policies: Dict[str, str], sleep=asyncio.sleep):
        self._storage = MemoryStorage()
        self._limiter = MovingWindowRateLimiter(self._storage)
        self._items = {provider: parse(policy) for provider, policy in policies.items()}
        self._sleep = sleep

    @classmethod
    def from_settings(cls, config=None) -> "ProviderThrottle":
        config = config or settings
        return cls({
            "gmail": config.gmail_rate_limit,
            "teamleader": config.teamleader_rate_limit,
        })

    async def acquire(self, provider: str, key: str, cost: int = 1):
        item = self._items.get(provider)
        if item is None:
            return

        if cost > item.amount:
            raise ValueError(f"Cost {cost} exceeds {provider} window of {item.amount}")

        while not self._limiter.hit(item, provider, key, cost=cost):
            reset_time, _remaining = self._limiter.get_window_stats(item, provider, key)
            delay = max(reset_time - time.time(), 0.05)
            logger.debug(f"⏳ {provider} rate window full for {key}, waiting {delay:.2f}s")
            await self._sleep(delay)


class QuotaBudget:
    """
    Running quota estimate for one connection during one invocation.

    `used` starts at the connection's stored daily usage; `spent` is what this
    invocation added.
    """

    def __init__(self, used: int, limit: int, stop_ratio: float = 1.0):
        self.used = used
        self.limit = limit
        self.stop_ratio = stop_ratio
        self.spent = 0

    @property
    def ceiling(self) -> int:
        return int(self.limit * self.stop_ratio)

    def exhausted(self) -> bool:
        return self.used >= self.ceiling

    def charge(self, units: int):
        self.used += units
        self.spent += units

    def check(self):
        """Raise QuotaExceeded once usage has crossed the ceiling."""
        if self.exhausted():
            raise QuotaExceeded(self.used, self.ceiling)


_default_throttle: Optional[ProviderThrottle] = None


def get_throttle() -> ProviderThrottle:
    """Process-wide throttle built from settings."""
    global _default_throttle
    if _default_throttle is None:
        _default_throttle = ProviderThrottle.from_settings()
    return _default_throttle
