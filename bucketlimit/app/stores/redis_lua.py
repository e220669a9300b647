"""Redis Lua scripts for the token bucket store.

Each script runs atomically on the server, which gives the engine the three
primitives it needs: a single-round-trip read of both items, a conditional
write, and create-if-absent. Both keys of an identifier share a hash tag so
they live in the same cluster slot.
"""

# KEYS[1]: LIMIT key, KEYS[2]: SETTINGS key
# Returns {limit_fields, settings_fields}, each a flat HGETALL list (empty if absent)
FETCH_SCRIPT = """
    local limit = redis.call('HGETALL', KEYS[1])
    local settings = redis.call('HGETALL', KEYS[2])
    return {limit, settings}
"""

# Conditional commit: succeeds only if the LIMIT item still holds the values
# observed by the fetch. A missing item returns false from HGET and never matches.
# KEYS[1]: LIMIT key
# ARGV[1]: observed tokens, ARGV[2]: observed last_updated
# ARGV[3]: new tokens, ARGV[4]: new last_updated, ARGV[5]: ttl seconds (0 = none)
COMMIT_SCRIPT = """
    local tokens = redis.call('HGET', KEYS[1], 'tokens')
    local last_updated = redis.call('HGET', KEYS[1], 'last_updated')
    if tokens ~= ARGV[1] or last_updated ~= ARGV[2] then
        return 0
    end
    redis.call('HSET', KEYS[1], 'tokens', ARGV[3], 'last_updated', ARGV[4])
    local ttl = tonumber(ARGV[5])
    if ttl > 0 then
        redis.call('EXPIRE', KEYS[1], ttl)
    end
    return 1
"""

# KEYS[1]: LIMIT key
# ARGV[1]: identifier, ARGV[2]: tokens, ARGV[3]: last_updated, ARGV[4]: ttl seconds
CREATE_SCRIPT = """
    if redis.call('EXISTS', KEYS[1]) == 1 then
        return 0
    end
    redis.call('HSET', KEYS[1], 'pk', ARGV[1], 'sk', 'LIMIT', 'tokens', ARGV[2], 'last_updated', ARGV[3])
    local ttl = tonumber(ARGV[4])
    if ttl > 0 then
        redis.call('EXPIRE', KEYS[1], ttl)
    end
    return 1
"""

# Replaces the SETTINGS item so fields dropped from a policy do not linger.
# KEYS[1]: SETTINGS key, ARGV: flat field/value list
PUT_SETTINGS_SCRIPT = """
    redis.call('DEL', KEYS[1])
    redis.call('HSET', KEYS[1], unpack(ARGV))
    return 1
"""
