"""Shared fixtures for rate limiter tests.

The mock Redis client keeps string values in a dict and emulates the token
bucket Lua script in Python, including Redis' conversion of Lua numbers to
strings on write and to integer replies on return.
"""

import hashlib
import math
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from redis.exceptions import NoScriptError

from tokengate.app.services.rate_limiter import RedisRateLimiter, TOKEN_BUCKET_SCRIPT


class FakeClock:
    """Controllable epoch clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def __call__(self) -> float:
        return self.now


def _lua_number_to_redis(value: float) -> str:
    # Redis formats Lua numbers passed to redis.call with %.17g
    return format(value, ".17g")


def _run_token_bucket(redis, keys, argv):
    tokens_key, timestamp_key = keys
    rate = float(argv[0])
    capacity = float(argv[1])
    now = float(argv[2])
    requested = float(argv[3])

    fill_time = capacity / rate
    ttl = max(1, math.ceil(fill_time * 2))

    last_tokens = redis.data.get(tokens_key)
    last_tokens = capacity if last_tokens is None else float(last_tokens)
    last_refreshed = redis.data.get(timestamp_key)
    last_refreshed = now if last_refreshed is None else float(last_refreshed)

    delta = max(0, now - last_refreshed)
    filled_tokens = min(capacity, last_tokens + delta * rate)

    allowed_num = 0
    new_tokens = filled_tokens
    if filled_tokens >= requested:
        new_tokens = filled_tokens - requested
        allowed_num = 1

    redis.data[tokens_key] = _lua_number_to_redis(new_tokens)
    redis.data[timestamp_key] = _lua_number_to_redis(now)
    redis.ttls[tokens_key] = ttl
    redis.ttls[timestamp_key] = ttl

    # Lua numbers become integer replies by truncation
    return [allowed_num, int(new_tokens)]


@pytest.fixture
def mock_redis():
    """Create a mock Redis client for testing."""
    redis = MagicMock()
    redis.data = {}
    redis.ttls = {}
    redis.scripts = {}
    redis.calls = []

    async def mock_ping():
        return True

    async def mock_script_load(script):
        sha = hashlib.sha1(script.encode()).hexdigest()
        redis.scripts[sha] = script
        return sha

    def _dispatch(script, numkeys, args):
        assert script == TOKEN_BUCKET_SCRIPT
        keys = [str(k) for k in args[:numkeys]]
        argv = [str(a) for a in args[numkeys:]]
        return _run_token_bucket(redis, keys, argv)

    async def mock_evalsha(sha, numkeys, *args):
        redis.calls.append(("evalsha", sha))
        if sha not in redis.scripts:
            raise NoScriptError("No matching script. Please use EVAL.")
        return _dispatch(redis.scripts[sha], numkeys, args)

    async def mock_eval(script, numkeys, *args):
        redis.calls.append(("eval", None))
        redis.scripts[hashlib.sha1(script.encode()).hexdigest()] = script
        return _dispatch(script, numkeys, args)

    async def mock_get(key):
        value = redis.data.get(key)
        return value.encode() if isinstance(value, str) else value

    def flush_scripts():
        redis.scripts.clear()

    redis.ping = mock_ping
    redis.script_load = mock_script_load
    redis.evalsha = mock_evalsha
    redis.eval = mock_eval
    redis.get = mock_get
    redis.flush_scripts = flush_scripts
    redis.aclose = AsyncMock()

    return redis


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def limiter(mock_redis, clock):
    """An initialized limiter bound to the mock Redis client."""
    return await RedisRateLimiter.create(
        redis_client=mock_redis,
        key_prefix="request_rate_limiter",
        timeout=1.0,
        clock=clock,
    )
