import threading
import time
from collections import OrderedDict, deque

from starlette.middleware.base import BaseHTTPMiddleware

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'self'; object-src 'none'",
    "Cross-Origin-Opener-Policy": "same-origin",
    "X-DNS-Prefetch-Control": "off",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, headers: dict[str, str] | None = None):
        super().__init__(app)
        self.headers = headers or SECURITY_HEADERS

    async def dispatch(self, request, call_next):
        response = await call_next(request)
        for name, value in self.headers.items():
            response.headers.setdefault(name, value)
        return response


class RateLimiter:
    """
    Sliding-window limiter kept in memory, keyed by client address.

    At most `max_keys` clients are tracked; the least recently seen one is
    forgotten first.
    """

    def __init__(self, max_requests: int, window_seconds: float, max_keys: int = 10000):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.max_keys = max_keys
        self._hits: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = threading.Lock()

    def hit(self, key: str, now: float | None = None) -> float | None:
        """
        Records a request. Returns None if it is allowed, otherwise the number
        of seconds until the oldest request in the window expires.
        """
        now = time.monotonic() if now is None else now
        with self._lock:
            hits = self._hits.pop(key, None) or deque()
            while hits and now - hits[0] >= self.window_seconds:
                hits.popleft()

            retry_after = None
            if len(hits) >= self.max_requests:
                retry_after = self.window_seconds - (now - hits[0])
            else:
                hits.append(now)

            self._hits[key] = hits
            while len(self._hits) > self.max_keys:
                self._hits.popitem(last=False)

        return retry_after

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
