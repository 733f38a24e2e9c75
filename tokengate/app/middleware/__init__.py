"""Middleware package."""

from tokengate.app.middleware.rate_limit import (
    RateLimitMiddleware,
    RateLimitRule,
    default_rule_resolver,
    get_client_key,
)

__all__ = [
    "RateLimitMiddleware",
    "RateLimitRule",
    "default_rule_resolver",
    "get_client_key",
]
