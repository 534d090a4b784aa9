"""
Proxy Pool
Round-robin rotation over the configured egress proxies
"""

import logging
from typing import Dict, Optional, Sequence, Tuple

from .models import ProxyEndpoint

logger = logging.getLogger(__name__)


class ProxyPool:
    """
    Cursor over an ordered, fixed sequence of proxy endpoints.

    The pool never adds or removes endpoints. A rotation increments the
    outgoing endpoint's use count and moves the cursor to the next active
    endpoint in circular order.
    """

    def __init__(self, endpoints: Sequence[ProxyEndpoint] = ()):
        self.endpoints: Tuple[ProxyEndpoint, ...] = tuple(endpoints)
        self.current_index = 0
        self.rotations = 0

    def __len__(self) -> int:
        return len(self.endpoints)

    @property
    def current(self) -> Optional[ProxyEndpoint]:
        """The endpoint the browser should use, or None if no proxies are configured."""
        if not self.endpoints:
            return None
        return self.endpoints[self.current_index]

    @property
    def active_count(self) -> int:
        return sum(1 for p in self.endpoints if p.active)

    @property
    def can_rotate(self) -> bool:
        """Rotation only makes sense with somewhere else to go."""
        return len(self.endpoints) > 1

    def rotate(self) -> Optional[ProxyEndpoint]:
        """
        Move to the next active proxy.

        The current endpoint is the last candidate, so a single active proxy
        stays selected. If no endpoint is active the cursor advances once
        regardless.
        """
        if not self.endpoints:
            return None

        count = len(self.endpoints)
        outgoing = self.endpoints[self.current_index]
        outgoing.use_count += 1

        next_index = None
        for step in range(1, count + 1):
            candidate = (self.current_index + step) % count
            if self.endpoints[candidate].active:
                next_index = candidate
                break

        if next_index is None:
            next_index = (self.current_index + 1) % count
            logger.warning("[ProxyPool] No active proxies left, falling back to next endpoint")

        self.current_index = next_index
        self.rotations += 1

        proxy = self.endpoints[self.current_index]
        logger.info(f"[ProxyPool] Rotating to proxy: {proxy.address}")
        return proxy

    def get_stats(self) -> Dict:
        """Get proxy usage statistics."""
        return {
            "total_proxies": len(self.endpoints),
            "active_proxies": self.active_count,
            "rotations": self.rotations,
            "current": self.current.address if self.current else None,
            "by_proxy": {p.address: p.use_count for p in self.endpoints},
        }
