import logging
import time
from threading import Lock
from typing import Dict, Tuple

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

WINDOW_SECONDS = 60


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks requests per client within a one minute window.
    """
    def __init__(self, requests_per_minute: int = 60):
        self.rpm = requests_per_minute
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}
        self._lock = Lock()
        self._last_cleanup = time.time()

    def is_allowed(self, identifier: str) -> bool:
        now = time.time()
        with self._lock:
            # Expired windows are purged at most once per window
            if now - self._last_cleanup > WINDOW_SECONDS:
                self._purge(now)
            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > WINDOW_SECONDS:
                # New window
                self.requests[identifier] = (1, now)
                return True

            if count >= self.rpm:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self):
        """Cleanup old entries to prevent memory leak"""
        with self._lock:
            self._purge(time.time())

    def _purge(self, now: float) -> None:
        keys_to_delete = [k for k, v in self.requests.items() if now - v[1] > WINDOW_SECONDS]
        for k in keys_to_delete:
            del self.requests[k]
        self._last_cleanup = now


def client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


class RateLimit:
    """
    Route dependency enforcing a RateLimiter per client address.

    Usage: Depends(RateLimit(limiter))
    """
    def __init__(self, limiter: RateLimiter):
        self.limiter = limiter

    def __call__(self, request: Request) -> None:
        identifier = client_identifier(request)
        if not self.limiter.is_allowed(identifier):
            logger.warning(f"Rate limit exceeded for {identifier} on {request.url.path}")
            raise HTTPException(status_code=429, detail="Too many requests, try again in a minute")
