import time
from threading import Lock
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request, status


class RateLimiter:
    """
    Simple in-memory rate limiter using a fixed window algorithm.
    Tracks requests per identifier (client IP) within a one-minute window.
    """

    def __init__(self, requests_per_minute: int = 60, clock: Callable[[], float] = time.time):
        self.rpm = requests_per_minute
        self._clock = clock
        self._lock = Lock()
        # identifier -> (count, window_start_time)
        self.requests: Dict[str, Tuple[int, float]] = {}

    def is_allowed(self, identifier: str) -> bool:
        now = self._clock()
        with self._lock:
            count, start_time = self.requests.get(identifier, (0, now))

            if now - start_time > 60:
                # New window
                self.requests[identifier] = (1, now)
                return True

            if count >= self.rpm:
                return False

            self.requests[identifier] = (count + 1, start_time)
            return True

    def cleanup(self):
        """Drop expired windows so idle clients don't accumulate."""
        now = self._clock()
        with self._lock:
            keys_to_delete = [k for k, v in self.requests.items() if now - v[1] > 60]
            for k in keys_to_delete:
                del self.requests[k]

    def reset(self) -> None:
        with self._lock:
            self.requests.clear()


def throttle(limiter: RateLimiter) -> Callable[[Request], None]:
    """Create a dependency that rejects a client once it exceeds ``limiter``."""

    def dependency(request: Request) -> None:
        identifier = request.client.host if request.client else "unknown"
        limiter.cleanup()
        if not limiter.is_allowed(identifier):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail="Too many login attempts. Try again in a minute.",
            )

    return dependency
