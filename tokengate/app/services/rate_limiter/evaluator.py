"""Atomic token bucket evaluation against Redis."""

from typing import Any, Optional, Sequence

from redis.exceptions import NoScriptError

from tokengate.app.core.logging import get_logger
from tokengate.app.exceptions import BucketEvaluationError

from .models import BucketKeys
from .redis_lua import REQUESTED_TOKENS, TOKEN_BUCKET_SCRIPT

logger = get_logger(__name__)


class TokenBucketEvaluator:
    """Runs the token bucket script for one bucket in a single round-trip.

    The script is registered with ``SCRIPT LOAD`` once and then invoked by
    SHA. If Redis has dropped its script cache (restart, failover,
    ``SCRIPT FLUSH``) the full source is sent with ``EVAL`` instead, which
    also puts it back in the cache.
    """

    def __init__(self, redis_client: Any, script: str = TOKEN_BUCKET_SCRIPT) -> None:
        self._redis = redis_client
        self._script = script
        self._sha: Optional[str] = None

    @property
    def sha(self) -> Optional[str]:
        return self._sha

    async def load(self) -> str:
        """Register the script with Redis and remember its SHA1."""
        sha = await self._redis.script_load(self._script)
        self._sha = sha.decode() if isinstance(sha, bytes) else str(sha)
        return self._sha

    async def evaluate(
        self,
        keys: BucketKeys,
        replenish_rate: float,
        burst_capacity: float,
        now: int,
    ) -> tuple[bool, int]:
        """Refill, try to take one token and persist the bucket atomically.

        Args:
            keys: Token and timestamp keys of the bucket
            replenish_rate: Tokens added per second
            burst_capacity: Maximum tokens the bucket holds
            now: Current time in whole epoch seconds

        Returns:
            Tuple of (allowed, whole tokens remaining)

        Raises:
            BucketEvaluationError: If the script reply is malformed
            redis.RedisError: On any store failure
        """
        args = [replenish_rate, burst_capacity, now, REQUESTED_TOKENS]
        result = await self._execute(keys.as_list(), args)
        return self.parse_result(result)

    async def _execute(self, keys: Sequence[str], args: Sequence[Any]) -> Any:
        if self._sha is None:
            return await self._redis.eval(self._script, len(keys), *keys, *args)
        try:
            return await self._redis.evalsha(self._sha, len(keys), *keys, *args)
        except NoScriptError:
            logger.info("Token bucket script not cached by Redis, sending full source")
            return await self._redis.eval(self._script, len(keys), *keys, *args)

    @staticmethod
    def parse_result(result: Any) -> tuple[bool, int]:
        """Validate the ``{allowed_num, tokens}`` script reply."""
        if not isinstance(result, (list, tuple)) or len(result) != 2:
            raise BucketEvaluationError(result)
        allowed_num, tokens = result
        for value in (allowed_num, tokens):
            if isinstance(value, bool) or not isinstance(value, int):
                raise BucketEvaluationError(result)
        if allowed_num not in (0, 1) or tokens < 0:
            raise BucketEvaluationError(result)
        return allowed_num == 1, tokens
