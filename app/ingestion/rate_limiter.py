"""
Minimum-interval rate limiting for external APIs.

Semantic Scholar throttles unauthenticated clients to roughly one request
per second, so every outbound call goes through a RateLimiter first.
"""
import threading
import time

from app.config import SEMANTIC_SCHOLAR_RPS
from app.logging_config import get_logger

logger = get_logger(__name__)


class RateLimiter:
    """
    Enforces a minimum wall-clock interval between successive calls.

    The last-call timestamp is shared by every caller of the instance. Calls
    arrive from worker threads (asyncio.to_thread), so the lock is held across
    the wait: callers are strictly serialized and each one measures from the
    previous caller's post-wait time.
    """

    def __init__(self, requests_per_second: float = 1):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second  # seconds
        self._last_request_time = 0.0
        self._lock = threading.Lock()

    def wait_if_needed(self) -> None:
        """Block until min_interval has passed since the last permitted call."""
        with self._lock:
            elapsed = time.monotonic() - self._last_request_time
            if self._last_request_time and elapsed < self.min_interval:
                wait_time = self.min_interval - elapsed
                logger.debug(f"Rate limiting: waiting {wait_time * 1000:.0f}ms before next API call")
                time.sleep(wait_time)
            self._last_request_time = time.monotonic()

    def reset(self) -> None:
        """Allow the next call through immediately."""
        with self._lock:
            self._last_request_time = 0.0


def create_rate_limiter(requests_per_second: float = 1) -> RateLimiter:
    return RateLimiter(requests_per_second)


# Shared by every Semantic Scholar call in the process
semantic_scholar_rate_limiter = RateLimiter(SEMANTIC_SCHOLAR_RPS)
