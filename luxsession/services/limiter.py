import time
from fastapi import Request
from luxsession.core.errors import RateLimited


class RateLimiter:
    def __init__(self, max_per_minute: int, enabled: bool = True):
        self.max_per_minute = max_per_minute
        self.enabled = enabled
        self._requests = {}  # Stores IP -> [timestamp1, timestamp2...]

    def check(self, request: Request):
        """
        Enforces a sliding one-minute window per client IP on session starts
        """
        if not self.enabled:
            return

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()

        # Filter out requests older than 1 minute
        recent = [t for t in self._requests.get(client_ip, []) if now - t < 60]

        if len(recent) >= self.max_per_minute:
            self._requests[client_ip] = recent
            raise RateLimited("Too many session requests. Please wait.")

        recent.append(now)
        self._requests[client_ip] = recent
