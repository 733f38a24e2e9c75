"""Redis Lua scripts for distributed rate limiting.

Redis runs a script to completion before serving any other command, so the
read of the bucket and the write of its new level cannot interleave with
another caller working on the same keys.
"""

# Token bucket with lazy refill.
# KEYS[1] = tokens key, KEYS[2] = timestamp key
# ARGV[1] = replenish rate (tokens/s), ARGV[2] = burst capacity,
# ARGV[3] = now (epoch seconds), ARGV[4] = tokens requested
# The stored level keeps its fractional part; Redis truncates the returned
# Lua number to an integer reply.
TOKEN_BUCKET_SCRIPT = """
    local tokens_key = KEYS[1]
    local timestamp_key = KEYS[2]
    local rate = tonumber(ARGV[1])
    local capacity = tonumber(ARGV[2])
    local now = tonumber(ARGV[3])
    local requested = tonumber(ARGV[4])

    -- Keep idle buckets around for twice the time it takes to fill them
    local fill_time = capacity / rate
    local ttl = math.max(1, math.ceil(fill_time * 2))

    local last_tokens = tonumber(redis.call('GET', tokens_key))
    if last_tokens == nil then
        last_tokens = capacity
    end

    local last_refreshed = tonumber(redis.call('GET', timestamp_key))
    if last_refreshed == nil then
        last_refreshed = now
    end

    local delta = math.max(0, now - last_refreshed)
    local filled_tokens = math.min(capacity, last_tokens + (delta * rate))

    local allowed_num = 0
    local new_tokens = filled_tokens
    if filled_tokens >= requested then
        new_tokens = filled_tokens - requested
        allowed_num = 1
    end

    redis.call('SETEX', tokens_key, ttl, new_tokens)
    redis.call('SETEX', timestamp_key, ttl, now)

    return {allowed_num, new_tokens}
"""

# Tokens consumed by a single request
REQUESTED_TOKENS = 1
