"""Simple in-memory rate limiting for the recovery API."""

import time
from collections import defaultdict
from typing import Final

from fastapi import Request

from .presentation.error_handlers import problem_response
from .presentation.problem_details import ProblemDetailFactory
from .request_utils import get_client_ip, is_api_request, is_claim_request

WINDOW_SECONDS: Final = 60


class RateLimitExceeded(Exception):
    def __init__(self, limit: int, limit_type: str, retry_after: int):
        super().__init__(f"Rate limit of {limit} {limit_type} requests per minute")
        self.limit = limit
        self.limit_type = limit_type
        self.retry_after = retry_after


class RateLimiter:
    """Sliding-window limiter keyed by client IP and bucket."""

    def __init__(self):
        self._requests: dict[tuple[str, str], list[float]] = defaultdict(list)
        # Requests per minute
        self._limits: Final = {
            "read": 100,
            "write": 30,
            "claim": 5,
        }
        self._enabled: bool = True

    def disable(self) -> None:
        """Disable rate limiting (for testing)."""
        self._enabled = False

    def enable(self) -> None:
        self._enabled = True

    def reset(self) -> None:
        self._requests.clear()

    def set_limits_for_testing(self, **limits: int) -> dict[str, int]:
        """Set rate limits for testing purposes. Returns original limits."""
        original = self._limits.copy()
        for limit_type, value in limits.items():
            if limit_type in self._limits:
                self._limits[limit_type] = value
        return original

    def restore_limits(self, original_limits: dict[str, int]) -> None:
        self._limits.update(original_limits)

    def get_request_count(self, ip: str, limit_type: str) -> int:
        key = (ip, limit_type)
        self._clean_old_requests(key)
        return len(self._requests[key])

    def get_rate_limit_info(self, request: Request) -> tuple[int, int, int]:
        """Return ``(limit, remaining, reset_time)`` for the request's bucket."""
        limit_type = self._bucket_for(request)
        key = (get_client_ip(request), limit_type)
        self._clean_old_requests(key)
        limit = self._limits[limit_type]
        remaining = max(0, limit - len(self._requests[key]))
        return limit, remaining, int(time.time()) + WINDOW_SECONDS

    def _clean_old_requests(self, key: tuple[str, str]) -> None:
        cutoff_time = time.time() - WINDOW_SECONDS
        self._requests[key] = [
            timestamp for timestamp in self._requests[key] if timestamp > cutoff_time
        ]

    def _bucket_for(self, request: Request) -> str:
        if is_claim_request(request):
            return "claim"
        if request.method in ["POST", "PUT", "DELETE", "PATCH"]:
            return "write"
        return "read"

    def check_rate_limit(self, request: Request) -> None:
        """Record the request, or raise ``RateLimitExceeded`` if over the limit."""
        if not self._enabled:
            return

        limit_type = self._bucket_for(request)
        limit = self._limits[limit_type]
        key = (get_client_ip(request), limit_type)

        self._clean_old_requests(key)
        if len(self._requests[key]) >= limit:
            raise RateLimitExceeded(limit, limit_type, retry_after=WINDOW_SECONDS)

        self._requests[key].append(time.time())


# Global rate limiter instance
rate_limiter = RateLimiter()


async def rate_limit_middleware(request: Request, call_next):
    """Rate limiting middleware for FastAPI."""
    if not is_api_request(request):
        return await call_next(request)

    try:
        rate_limiter.check_rate_limit(request)
    except RateLimitExceeded as e:
        response = problem_response(
            ProblemDetailFactory.too_many_requests(
                detail=str(e), instance=str(request.url.path)
            )
        )
        response.headers["Retry-After"] = str(e.retry_after)
        return response

    response = await call_next(request)

    limit, remaining, reset_time = rate_limiter.get_rate_limit_info(request)
    response.headers["X-RateLimit-Limit"] = str(limit)
    response.headers["X-RateLimit-Remaining"] = str(remaining)
    response.headers["X-RateLimit-Reset"] = str(reset_time)
    return response
