"""Concurrency and per-tenant rate limiting for translation requests."""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, List

from cachetools import TTLCache  # type: ignore[import-untyped]
from linguaroute.core.exceptions import RateLimitExceededError
from linguaroute.metrics.translation_metrics import rate_limit_rejections_total

logger = logging.getLogger(__name__)


class TranslationThrottle:
    """Caps in-flight translations and per-tenant requests per minute.

    Each tenant's counter lives in a TTLCache entry created on the first
    request of a window, so the window resets sixty seconds after it opened.
    """

    WINDOW_SECONDS = 60

    def __init__(
        self,
        max_concurrent: int = 4,
        requests_per_minute: int = 0,
        max_tenants: int = 10000,
    ):
        """Initialize the throttle.

        Args:
            max_concurrent: Maximum translations in flight at once
            requests_per_minute: Per-tenant limit (0 disables it)
            max_tenants: Maximum tenant windows tracked at once
        """
        self.max_concurrent = max(1, max_concurrent)
        self.requests_per_minute = max(0, requests_per_minute)
        self._semaphore = asyncio.Semaphore(self.max_concurrent)
        self._windows: TTLCache = TTLCache(maxsize=max_tenants, ttl=self.WINDOW_SECONDS)
        self._lock = threading.Lock()

    def check_rate(self, tenant_id: str) -> None:
        """Count a request against the tenant's window.

        Raises:
            RateLimitExceededError: If the tenant already used its allowance
        """
        if not self.requests_per_minute:
            return
        key = tenant_id or "anonymous"
        with self._lock:
            window: List[int] = self._windows.get(key)
            if window is None:
                window = [0]
                self._windows[key] = window
            if window[0] >= self.requests_per_minute:
                rate_limit_rejections_total.inc()
                logger.warning(f"Tenant {key} exceeded {self.requests_per_minute} requests/minute")
                raise RateLimitExceededError(key, self.requests_per_minute)
            window[0] += 1

    @asynccontextmanager
    async def acquire(self, tenant_id: str) -> AsyncIterator[None]:
        self.check_rate(tenant_id)
        async with self._semaphore:
            yield
