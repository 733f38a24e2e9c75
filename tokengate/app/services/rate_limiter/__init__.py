"""Distributed token bucket rate limiting using Redis.

This package provides atomic admission decisions using a Redis Lua script,
failing open when Redis is unavailable.
"""

from .evaluator import TokenBucketEvaluator
from .keys import DEFAULT_KEY_PREFIX, get_keys
from .models import UNKNOWN_TOKENS, BucketKeys, RateLimiterResponse
from .redis_lua import REQUESTED_TOKENS, TOKEN_BUCKET_SCRIPT
from .service import RedisRateLimiter

__all__ = [
    "BucketKeys",
    "RateLimiterResponse",
    "UNKNOWN_TOKENS",
    "DEFAULT_KEY_PREFIX",
    "get_keys",
    "TOKEN_BUCKET_SCRIPT",
    "REQUESTED_TOKENS",
    "TokenBucketEvaluator",
    "RedisRateLimiter",
]
