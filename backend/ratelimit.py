# backend/ratelimit.py
from limits import RateLimitItemPerSecond
from limits.storage import MemoryStorage
from limits.strategies import FixedWindowRateLimiter


class RateLimiter:
    """Fixed-window request counter keyed by IP or user id, kept in memory."""

    def __init__(self, max_requests: int = 30, window_seconds: int = 60, namespace: str = "default", storage=None):
        self.item = RateLimitItemPerSecond(max_requests, int(window_seconds))
        self.namespace = namespace
        self.storage = storage or MemoryStorage()
        self._strategy = FixedWindowRateLimiter(self.storage)

    def check(self, identifier: str) -> bool:
        """Counts one request; False once the identifier is over its limit."""
        return self._strategy.hit(self.item, self.namespace, identifier)


def client_ip(request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "127.0.0.1"
