"""
Per-client rate limiting for the HTTP API.

Fixed-window counters keyed by (client address, path), kept in memory. Clients
are identified by remote address, so everyone behind one NAT or proxy shares
a single allowance.
"""

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from aiohttp import web

from .api_handlers import APIResponse
from .bot_exceptions import RateLimitExceededError
from .bot_models import RateLimitRule

logger = logging.getLogger(__name__)


DEFAULT_RULES: Dict[str, RateLimitRule] = {
    "/api/validate-password": RateLimitRule(
        max_requests=1, window_seconds=2,
        message="Too many password attempts, please try again later."
    ),
    "/api/send": RateLimitRule(
        max_requests=1, window_seconds=1,
        message="Too many messages, please slow down."
    ),
    "/api/typing": RateLimitRule(
        max_requests=1, window_seconds=4,
        message="Typing indicator rate limit exceeded."
    ),
    "/api/purge-bot-messages": RateLimitRule(
        max_requests=1, window_seconds=1,
        message="Too many purge requests, please slow down."
    ),
}


@dataclass
class RateLimitResult:
    """Outcome of counting one request against a rule."""
    allowed: bool
    limit: int
    requests_made: int
    requests_remaining: int
    reset_after_seconds: float


class RateLimiter:
    """
    In-memory fixed-window limiter.

    Windows start on a client's first request and last `window_seconds`.
    """

    PRUNE_EVERY = 256

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        # (client, path) -> (window_start, count)
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}
        self._hits = 0

    def hit(self, client: str, path: str, rule: RateLimitRule) -> RateLimitResult:
        """Count a request and report whether it fits in the client's window."""
        now = self.clock()
        key = (client, path)

        self._hits += 1
        if self._hits % self.PRUNE_EVERY == 0:
            self.prune(now)

        window_start, count = self._windows.get(key, (now, 0))
        if now - window_start >= rule.window_seconds:
            window_start, count = now, 0

        count += 1
        self._windows[key] = (window_start, count)

        return RateLimitResult(
            allowed=count <= rule.max_requests,
            limit=rule.max_requests,
            requests_made=count,
            requests_remaining=max(0, rule.max_requests - count),
            reset_after_seconds=max(0.0, rule.window_seconds - (now - window_start))
        )

    def check(self, client: str, path: str, rule: RateLimitRule) -> RateLimitResult:
        """Like hit(), but raises RateLimitExceededError when over the limit."""
        result = self.hit(client, path, rule)
        if not result.allowed:
            raise RateLimitExceededError(rule.message, retry_after_seconds=result.reset_after_seconds)
        return result

    def prune(self, now: Optional[float] = None, max_age: float = 60.0) -> int:
        """Forget windows older than max_age seconds. Returns how many were dropped."""
        now = self.clock() if now is None else now
        stale = [key for key, (start, _) in self._windows.items() if now - start >= max_age]
        for key in stale:
            del self._windows[key]
        return len(stale)

    def reset(self) -> None:
        self._windows.clear()


def client_key(request: web.Request) -> str:
    return request.remote or "unknown"


def _set_rate_limit_headers(response: web.StreamResponse, result: RateLimitResult) -> None:
    response.headers["RateLimit-Limit"] = str(result.limit)
    response.headers["RateLimit-Remaining"] = str(result.requests_remaining)
    response.headers["RateLimit-Reset"] = str(math.ceil(result.reset_after_seconds))


def create_rate_limit_middleware(
    limiter: RateLimiter,
    rules: Optional[Dict[str, RateLimitRule]] = None
):
    """Build an aiohttp middleware enforcing `rules` (path -> rule)."""
    rules = DEFAULT_RULES if rules is None else rules

    @web.middleware
    async def rate_limit_middleware(request: web.Request, handler):
        rule = rules.get(request.path)
        if rule is None:
            return await handler(request)

        client = client_key(request)
        try:
            result = limiter.check(client, request.path, rule)
        except RateLimitExceededError as e:
            logger.warning(f"Rate limit exceeded for {client} on {request.path}")
            response = web.json_response(
                APIResponse.error(e.error_code, e.message, status_code=e.status_code),
                status=e.status_code
            )
            response.headers["Retry-After"] = str(max(1, math.ceil(e.retry_after_seconds)))
            return response

        response = await handler(request)
        _set_rate_limit_headers(response, result)
        return response

    return rate_limit_middleware
