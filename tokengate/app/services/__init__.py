"""Services package.

This package provides:
- Distributed token bucket rate limiting on Redis
"""

from tokengate.app.services.rate_limiter import (
    RateLimiterResponse,
    RedisRateLimiter,
    get_keys,
)

__all__ = [
    "RateLimiterResponse",
    "RedisRateLimiter",
    "get_keys",
]
