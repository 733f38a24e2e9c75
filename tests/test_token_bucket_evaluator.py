"""Tests for TokenBucketEvaluator and the token bucket Lua script."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis
from redis.exceptions import NoScriptError

from tokengate.app.exceptions import BucketEvaluationError
from tokengate.app.services.rate_limiter import (
    REQUESTED_TOKENS,
    TOKEN_BUCKET_SCRIPT,
    TokenBucketEvaluator,
    get_keys,
)


class TestTokenBucketScript:
    """Contract of the Lua script text."""

    def test_reads_both_keys(self):
        assert "KEYS[1]" in TOKEN_BUCKET_SCRIPT
        assert "KEYS[2]" in TOKEN_BUCKET_SCRIPT

    def test_takes_four_arguments(self):
        for i in range(1, 5):
            assert f"ARGV[{i}]" in TOKEN_BUCKET_SCRIPT
        assert "ARGV[5]" not in TOKEN_BUCKET_SCRIPT

    def test_writes_with_expiry(self):
        assert TOKEN_BUCKET_SCRIPT.count("'SETEX'") == 2

    def test_single_token_per_request(self):
        assert REQUESTED_TOKENS == 1


class TestParseResult:
    """Validation of script replies."""

    def test_allowed(self):
        assert TokenBucketEvaluator.parse_result([1, 9]) == (True, 9)

    def test_denied(self):
        assert TokenBucketEvaluator.parse_result([0, 0]) == (False, 0)

    def test_accepts_tuple(self):
        assert TokenBucketEvaluator.parse_result((1, 3)) == (True, 3)

    @pytest.mark.parametrize(
        "reply",
        [None, "OK", [], [1], [1, 2, 3], [b"1", b"2"], [1.0, 2], [True, 2], [3, 1], [0, -1]],
    )
    def test_rejects_malformed(self, reply):
        with pytest.raises(BucketEvaluationError) as exc_info:
            TokenBucketEvaluator.parse_result(reply)
        assert exc_info.value.result == reply


class TestEvaluate:
    """Script invocation against Redis."""

    @pytest.mark.asyncio
    async def test_load_stores_sha(self, mock_redis):
        evaluator = TokenBucketEvaluator(mock_redis)
        sha = await evaluator.load()
        assert evaluator.sha == sha
        assert mock_redis.scripts[sha] == TOKEN_BUCKET_SCRIPT

    @pytest.mark.asyncio
    async def test_load_decodes_bytes_sha(self):
        client = MagicMock()
        client.script_load = AsyncMock(return_value=b"deadbeef")
        evaluator = TokenBucketEvaluator(client)
        assert await evaluator.load() == "deadbeef"

    @pytest.mark.asyncio
    async def test_uses_evalsha_once_loaded(self, mock_redis):
        evaluator = TokenBucketEvaluator(mock_redis)
        await evaluator.load()
        result = await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)
        assert result == (True, 9)
        assert [call[0] for call in mock_redis.calls] == ["evalsha"]

    @pytest.mark.asyncio
    async def test_falls_back_to_eval_on_noscript(self, mock_redis):
        evaluator = TokenBucketEvaluator(mock_redis)
        await evaluator.load()
        mock_redis.flush_scripts()

        result = await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)
        assert result == (True, 9)
        assert [call[0] for call in mock_redis.calls] == ["evalsha", "eval"]

        # EVAL put the script back into the cache
        await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)
        assert mock_redis.calls[-1][0] == "evalsha"

    @pytest.mark.asyncio
    async def test_uses_eval_when_not_loaded(self, mock_redis):
        evaluator = TokenBucketEvaluator(mock_redis)
        result = await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)
        assert result == (True, 9)
        assert [call[0] for call in mock_redis.calls] == ["eval"]

    @pytest.mark.asyncio
    async def test_passes_keys_then_arguments(self):
        client = MagicMock()
        client.script_load = AsyncMock(return_value="sha1")
        client.evalsha = AsyncMock(return_value=[1, 4])
        evaluator = TokenBucketEvaluator(client)
        await evaluator.load()

        keys = get_keys("rule-1")
        await evaluator.evaluate(keys, 2.5, 5.0, 1234)

        client.evalsha.assert_awaited_once_with(
            "sha1", 2, keys.tokens_key, keys.timestamp_key, 2.5, 5.0, 1234, 1
        )

    @pytest.mark.asyncio
    async def test_redis_errors_propagate(self):
        client = MagicMock()
        client.script_load = AsyncMock(return_value="sha1")
        client.evalsha = AsyncMock(side_effect=redis.ConnectionError("down"))
        evaluator = TokenBucketEvaluator(client)
        await evaluator.load()

        with pytest.raises(redis.ConnectionError):
            await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)

    @pytest.mark.asyncio
    async def test_noscript_then_eval_failure_propagates(self):
        client = MagicMock()
        client.script_load = AsyncMock(return_value="sha1")
        client.evalsha = AsyncMock(side_effect=NoScriptError("No matching script"))
        client.eval = AsyncMock(side_effect=redis.ResponseError("ERR script failed"))
        evaluator = TokenBucketEvaluator(client)
        await evaluator.load()

        with pytest.raises(redis.ResponseError):
            await evaluator.evaluate(get_keys("rule-1"), 1.0, 10.0, 1000)
        client.eval.assert_awaited_once()
