"""Rate limiting middleware.

Plugs the distributed token bucket limiter into an ASGI request pipeline.
Each request is mapped to a rule (identifier plus bucket parameters); the
shared Redis bucket for that rule decides whether it proceeds.
"""

import hashlib
from dataclasses import dataclass
from typing import Callable, Optional

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from tokengate.app.core.config import settings
from tokengate.app.core.logging import get_log_context, get_logger
from tokengate.app.exceptions import RateLimitExceededError
from tokengate.app.services.rate_limiter import RateLimiterResponse, RedisRateLimiter

logger = get_logger(__name__)

MAX_API_KEY_LENGTH = 512


@dataclass(frozen=True)
class RateLimitRule:
    """Bucket parameters applied to one request."""
    rule_id: str
    replenish_rate: float
    burst_capacity: float


RuleResolver = Callable[[Request], Optional[RateLimitRule]]


def get_client_key(request: Request) -> str:
    """Get rate limit key for the request.

    Uses the bearer API key if present, otherwise the client IP. Both are
    hashed so raw credentials and addresses never reach Redis.
    """
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        api_key = auth[7:].strip()[:MAX_API_KEY_LENGTH]
        key_hash = hashlib.sha256(api_key.encode()).hexdigest()[:32]
        return f"apikey:{key_hash}"

    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        client_ip = forwarded.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"

    ip_hash = hashlib.sha256(client_ip.encode()).hexdigest()[:32]
    return f"ip:{ip_hash}"


def default_rule_resolver(request: Request) -> RateLimitRule:
    """One bucket per client using the configured default rate and capacity."""
    return RateLimitRule(
        rule_id=get_client_key(request),
        replenish_rate=settings.rate_limit_replenish_rate,
        burst_capacity=settings.rate_limit_burst_capacity,
    )


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce rate limits on requests.

    The limiter is taken from the constructor or, when omitted, from
    ``request.app.state.rate_limiter`` so it can be created in the
    application's lifespan handler. Requests for which the resolver returns
    None are not rate limited.
    """

    def __init__(
        self,
        app,
        limiter: Optional[RedisRateLimiter] = None,
        rule_resolver: RuleResolver = default_rule_resolver,
    ):
        super().__init__(app)
        self.limiter = limiter
        self.rule_resolver = rule_resolver

    def _get_limiter(self, request: Request) -> RedisRateLimiter:
        if self.limiter is not None:
            return self.limiter
        return request.app.state.rate_limiter

    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint
    ) -> Response:
        """Process request with rate limiting."""
        rule = self.rule_resolver(request)
        if rule is None:
            return await call_next(request)

        result = await self._get_limiter(request).is_allowed(
            rule.rule_id, rule.replenish_rate, rule.burst_capacity
        )

        if not result.allowed:
            logger.info(
                "Request rejected by rate limiter",
                extra=get_log_context(
                    rule_id=rule.rule_id,
                    client_key=get_client_key(request),
                    request_id=request.headers.get("X-Request-ID"),
                    path=request.url.path,
                    method=request.method,
                    status_code=429,
                ),
            )
            error = RateLimitExceededError(rule.rule_id, result.tokens_remaining)
            response = JSONResponse(status_code=error.status_code, content=error.to_response())
            self._add_headers(response, rule, result)
            return response

        response = await call_next(request)
        self._add_headers(response, rule, result)
        return response

    @staticmethod
    def _add_headers(response: Response, rule: RateLimitRule, result: RateLimiterResponse) -> None:
        response.headers["X-RateLimit-Replenish-Rate"] = f"{rule.replenish_rate:g}"
        response.headers["X-RateLimit-Burst-Capacity"] = f"{rule.burst_capacity:g}"
        if not result.is_fallback:
            response.headers["X-RateLimit-Remaining"] = str(result.tokens_remaining)
