"""Redis Lua scripts for shared token bucket state.

Redis runs a script atomically, so refill, check and consume for one bucket
happen as a single step even when many processes share the server. Each
bucket is its own key; different keys never wait on each other.
"""

# KEYS[1]  bucket hash key (fields: tokens, ts)
# ARGV[1]  capacity
# ARGV[2]  rate (tokens per period)
# ARGV[3]  period (seconds)
# ARGV[4]  cost
# ARGV[5]  now (seconds, wall clock shared by every caller)
# ARGV[6]  1 to consume and persist, 0 to only inspect
# ARGV[7]  float tolerance for the admission comparison
#
# Returns {admitted (0|1), tokens, retry_after}. Floats come back as strings
# because Redis truncates Lua numbers to integers in replies.
TOKEN_BUCKET_SCRIPT = """
    local key = KEYS[1]
    local capacity = tonumber(ARGV[1])
    local rate = tonumber(ARGV[2])
    local period = tonumber(ARGV[3])
    local cost = tonumber(ARGV[4])
    local now = tonumber(ARGV[5])
    local consume = tonumber(ARGV[6])
    local epsilon = tonumber(ARGV[7])

    -- Missing or evicted bucket starts full
    local state = redis.call('HMGET', key, 'tokens', 'ts')
    local tokens = tonumber(state[1])
    local ts = tonumber(state[2])
    if tokens == nil or ts == nil then
        tokens = capacity
        ts = now
    end

    -- Continuous refill; a clock stepping backwards adds nothing
    local elapsed = now - ts
    if elapsed > 0 then
        tokens = math.min(capacity, tokens + elapsed / period * rate)
        ts = now
    end
    tokens = math.max(0, math.min(capacity, tokens))

    local admitted = 0
    local retry_after = 0
    if tokens >= cost - epsilon then
        admitted = 1
        if consume == 1 then
            tokens = math.max(0, tokens - cost)
        end
    else
        retry_after = (cost - tokens) / rate * period
    end

    -- Persist the refill even on rejection; expire once the bucket is full
    -- again, since a missing key is equivalent to a full bucket
    if consume == 1 then
        redis.call('HSET', key, 'tokens', tostring(tokens), 'ts', tostring(ts))
        local ttl_ms = math.ceil((capacity - tokens) / rate * period * 1000) + 1000
        redis.call('PEXPIRE', key, ttl_ms)
    end

    return {admitted, tostring(tokens), tostring(retry_after)}
"""
