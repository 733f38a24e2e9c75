"""Distributed token bucket rate limiter backed by Redis.

Bucket state lives in Redis so every instance of a service shares the same
quota per rule. When Redis cannot be reached the limiter fails open: the
request is allowed and the condition is logged, so a limiter outage never
becomes an outage of the protected service.
"""

import asyncio
import math
import time
from typing import Any, Callable, Optional

import redis
import redis.asyncio as aioredis

from tokengate.app.core.config import settings
from tokengate.app.core.logging import get_log_context, get_logger
from tokengate.app.exceptions import (
    BucketEvaluationError,
    InvalidRateLimitError,
    RateLimiterNotInitializedError,
)

from .evaluator import TokenBucketEvaluator
from .keys import get_keys
from .models import RateLimiterResponse

logger = get_logger(__name__)


def _validate_positive(name: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise InvalidRateLimitError(name, value)
    if not math.isfinite(value) or value <= 0:
        raise InvalidRateLimitError(name, value)
    return float(value)


class RedisRateLimiter:
    """Token bucket rate limiter with state shared through Redis.

    Usage:
        limiter = await RedisRateLimiter.create(redis_url="redis://redis:6379/0")
        response = await limiter.is_allowed("tenant-42", replenish_rate=5, burst_capacity=20)

    ``create`` only returns once the Redis connection answered and the
    token bucket script is registered. An instance built with the plain
    constructor must be bound with ``initialize()`` before use.

    Redis key format:
    - <prefix>.{rule_id}.tokens - current bucket level (may be fractional)
    - <prefix>.{rule_id}.timestamp - epoch second of the last evaluation
    """

    def __init__(
        self,
        redis_client: Optional[Any] = None,
        redis_url: Optional[str] = None,
        key_prefix: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the rate limiter.

        Args:
            redis_client: Optional redis.asyncio client instance
            redis_url: Redis connection URL, used when no client is given
            key_prefix: Key namespace (defaults to settings)
            timeout: Seconds to wait for one evaluation (defaults to settings)
            clock: Source of the current epoch time
        """
        self._redis = redis_client
        self._owns_client = redis_client is None
        self._redis_url = redis_url or settings.redis_url
        self._key_prefix = key_prefix or settings.rate_limiter_key_prefix
        self._timeout = timeout if timeout is not None else settings.rate_limiter_timeout_seconds
        self._clock = clock
        self._evaluator: Optional[TokenBucketEvaluator] = None

    @classmethod
    async def create(cls, **kwargs: Any) -> "RedisRateLimiter":
        """Build a limiter and bind it to Redis in one step."""
        limiter = cls(**kwargs)
        await limiter.initialize()
        return limiter

    @property
    def initialized(self) -> bool:
        return self._evaluator is not None

    async def initialize(self) -> None:
        """Connect to Redis and register the token bucket script.

        Connection errors propagate: a limiter that cannot be set up is a
        deployment problem, not something to hide behind fail-open.
        """
        if self._evaluator is not None:
            return
        if self._redis is None:
            self._redis = aioredis.from_url(self._redis_url)
        try:
            await self._redis.ping()
            evaluator = TokenBucketEvaluator(self._redis)
            sha = await evaluator.load()
        except Exception:
            if self._owns_client:
                await self._redis.aclose()
                self._redis = None
            raise
        self._evaluator = evaluator
        logger.info(f"Rate limiter bound to Redis (script {sha}, prefix {self._key_prefix})")

    async def is_allowed(
        self,
        rule_id: str,
        replenish_rate: float,
        burst_capacity: float,
    ) -> RateLimiterResponse:
        """Decide whether one request under ``rule_id`` may proceed.

        Args:
            rule_id: Rule or tenant identifier sharing the quota
            replenish_rate: Tokens added per second
            burst_capacity: Bucket size

        Returns:
            The script's decision, or ``RateLimiterResponse.fail_open()``
            when Redis could not be consulted

        Raises:
            RateLimiterNotInitializedError: If initialize() was never awaited
            InvalidRuleIdError: If rule_id is empty
            InvalidRateLimitError: If rate or capacity is not positive
        """
        evaluator = self._evaluator
        if evaluator is None:
            raise RateLimiterNotInitializedError()
        keys = get_keys(rule_id, self._key_prefix)
        rate = _validate_positive("replenish_rate", replenish_rate)
        capacity = _validate_positive("burst_capacity", burst_capacity)
        now = int(self._clock())

        started = time.perf_counter()
        try:
            allowed, tokens_left = await asyncio.wait_for(
                evaluator.evaluate(keys, rate, capacity, now),
                timeout=self._timeout,
            )
        except redis.ConnectionError as e:
            logger.error(f"Redis connection failed: {e}", extra=get_log_context(rule_id=rule_id))
            return self._fail_open(rule_id, "connection_error")
        except (redis.TimeoutError, asyncio.TimeoutError) as e:
            logger.warning(f"Redis timeout: {e}", extra=get_log_context(rule_id=rule_id))
            return self._fail_open(rule_id, "timeout")
        except redis.RedisError as e:
            logger.error(f"Redis error: {e}", extra=get_log_context(rule_id=rule_id))
            return self._fail_open(rule_id, "redis_error")
        except BucketEvaluationError as e:
            logger.error(str(e), extra=get_log_context(rule_id=rule_id))
            return self._fail_open(rule_id, "bad_result")
        except Exception as e:
            logger.exception(f"Unexpected rate limit error: {e}", extra=get_log_context(rule_id=rule_id))
            return self._fail_open(rule_id, "unexpected")

        response = RateLimiterResponse(allowed=allowed, tokens_remaining=tokens_left)
        duration_ms = round((time.perf_counter() - started) * 1000, 3)
        logger.debug(
            f"RateLimiter response: {response}",
            extra=get_log_context(rule_id=rule_id, duration_ms=duration_ms),
        )
        return response

    def _fail_open(self, rule_id: str, error_type: str) -> RateLimiterResponse:
        logger.warning(
            f"Rate limiting fail-open triggered due to {error_type}. "
            "Request allowed without rate limit check.",
            extra=get_log_context(rule_id=rule_id, error_type=error_type),
        )
        return RateLimiterResponse.fail_open()

    async def close(self) -> None:
        """Release the Redis connection if this limiter created it."""
        self._evaluator = None
        if self._redis is not None and self._owns_client:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.warning(f"Error closing Redis connection: {e}")
            self._redis = None
