"""
Redis Lua scripts for atomic compound operations.

Each script executes atomically on the server, so the read-check-write
sequences below cannot interleave with other clients.

Usage:
    from redis_service.scripts.lua_scripts import BUILTIN_SCRIPTS, BuiltinScript

    definition = BUILTIN_SCRIPTS[BuiltinScript.EXPIRE_IF_NO_TTL]
"""

from __future__ import annotations

from enum import Enum

from redis_service.scripts.definition import ScriptDefinition


class BuiltinScript(str, Enum):
    """Names under which the built-in scripts are registered."""

    CAPPED_SORTED_SET_ADD = "CappedSortedSetAdd"
    EXPIRE_IF_NO_TTL = "ExpireIfNoTTL"
    CONDITIONAL_HASH_SET_HIGHER = "ConditionalHashSetHigher"
    CONDITIONAL_HASH_SET_LOWER = "ConditionalHashSetLower"
    BOUNDING_BOX_MEMBERSHIP = "BoundingBoxMembership"


# Suffixes of the four auxiliary sorted sets behind a bounding-box index
BBOX_LAT_MIN = ":bbox:lat:min"
BBOX_LAT_MAX = ":bbox:lat:max"
BBOX_LON_MIN = ":bbox:lon:min"
BBOX_LON_MAX = ":bbox:lon:max"


# =============================================================================
# Capped sorted set
# =============================================================================

CAPPED_SORTED_SET_ADD_SCRIPT = """
-- Add a member and keep only the top-N members by score
-- KEYS[1] = sorted set key
-- ARGV[1] = score
-- ARGV[2] = member
-- ARGV[3] = limit (max cardinality)
-- ARGV[4] = trim count (members removed once the limit is exceeded)
-- Returns: number of members trimmed

local key = KEYS[1]
local limit = tonumber(ARGV[3])
local trim = tonumber(ARGV[4]) or 1

redis.call('ZADD', key, ARGV[1], ARGV[2])

local size = redis.call('ZCARD', key)
if size <= limit then
    return 0
end

-- Never leave the set above its limit, even when trim is too small
local count = math.max(trim, size - limit)

-- Ranks are 0-based and the stop index is inclusive
return redis.call('ZREMRANGEBYRANK', key, 0, count - 1)
"""


# =============================================================================
# Expire only when no TTL is set
# =============================================================================

EXPIRE_IF_NO_TTL_SCRIPT = """
-- Set a TTL only if the key has none
-- KEYS[1] = key
-- ARGV[1] = ttl in seconds
-- Returns: 1 if the TTL was set, 0 otherwise

local ttl = redis.call('TTL', KEYS[1])
if ttl < 0 then
    return redis.call('EXPIRE', KEYS[1], ARGV[1])
end
return 0
"""


# =============================================================================
# Conditional hash field update
# =============================================================================

_CONDITIONAL_HASH_SET_TEMPLATE = """
-- Set a numeric hash field only if the new value is strictly {direction}
-- KEYS[1] = hash key
-- ARGV[1] = field
-- ARGV[2] = numeric value
-- Returns: the value when the field was absent, new - old on update, 0 otherwise.
-- Values and deltas are returned as strings; a Lua number reply would be
-- truncated to an integer.

local value = tonumber(ARGV[2])
if value == nil then
    return redis.error_reply('value is not a number')
end

local current = tonumber(redis.call('HGET', KEYS[1], ARGV[1]))
if current == nil then
    redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
    return tostring(value)
end

if value {operator} current then
    redis.call('HSET', KEYS[1], ARGV[1], ARGV[2])
    return tostring(value - current)
end
return 0
"""

CONDITIONAL_HASH_SET_HIGHER_SCRIPT = _CONDITIONAL_HASH_SET_TEMPLATE.format(
    direction="higher", operator=">"
)
CONDITIONAL_HASH_SET_LOWER_SCRIPT = _CONDITIONAL_HASH_SET_TEMPLATE.format(
    direction="lower", operator="<"
)


# =============================================================================
# Bounding-box membership
# =============================================================================

BOUNDING_BOX_MEMBERSHIP_SCRIPT = """
-- Find members whose bounding box encloses a point
-- KEYS[1] = base key of the index
-- ARGV[1] = latitude
-- ARGV[2] = longitude
-- Returns: sorted list of members present in all four range scans

local base = KEYS[1]
local lat = ARGV[1]
local lon = ARGV[2]

local scans = {
    redis.call('ZRANGEBYSCORE', base .. '%(lat_min)s', '-inf', lat),
    redis.call('ZRANGEBYSCORE', base .. '%(lat_max)s', lat, '+inf'),
    redis.call('ZRANGEBYSCORE', base .. '%(lon_min)s', '-inf', lon),
    redis.call('ZRANGEBYSCORE', base .. '%(lon_max)s', lon, '+inf'),
}

-- Accumulator is local to this call
local counts = {}
for _, members in ipairs(scans) do
    for _, member in ipairs(members) do
        counts[member] = (counts[member] or 0) + 1
    end
end

local result = {}
for member, count in pairs(counts) do
    if count == #scans then
        table.insert(result, member)
    end
end
table.sort(result)
return result
""" % {
    "lat_min": BBOX_LAT_MIN,
    "lat_max": BBOX_LAT_MAX,
    "lon_min": BBOX_LON_MIN,
    "lon_max": BBOX_LON_MAX,
}


# =============================================================================
# Bounding-box index maintenance
# =============================================================================
# Not registered as built-ins: they run on the raw client with all four
# auxiliary keys declared, so a hash-tagged base key works on a cluster.

INDEX_BOUNDING_BOX_SCRIPT = """
-- KEYS[1..4] = lat min, lat max, lon min, lon max sets
-- ARGV[1] = member
-- ARGV[2..5] = lat min, lat max, lon min, lon max scores
for i = 1, 4 do
    redis.call('ZADD', KEYS[i], ARGV[i + 1], ARGV[1])
end
return #KEYS
"""

REMOVE_FROM_BOUNDING_BOX_SCRIPT = """
-- KEYS = auxiliary sets of the index
-- ARGV[1] = member
-- Returns: number of sets the member was removed from
local removed = 0
for i = 1, #KEYS do
    removed = removed + redis.call('ZREM', KEYS[i], ARGV[1])
end
return removed
"""


BUILTIN_SCRIPTS: dict[BuiltinScript, ScriptDefinition] = {
    BuiltinScript.CAPPED_SORTED_SET_ADD: ScriptDefinition(
        name=BuiltinScript.CAPPED_SORTED_SET_ADD.value,
        key_arity=1,
        body=CAPPED_SORTED_SET_ADD_SCRIPT,
    ),
    BuiltinScript.EXPIRE_IF_NO_TTL: ScriptDefinition(
        name=BuiltinScript.EXPIRE_IF_NO_TTL.value,
        key_arity=1,
        body=EXPIRE_IF_NO_TTL_SCRIPT,
    ),
    BuiltinScript.CONDITIONAL_HASH_SET_HIGHER: ScriptDefinition(
        name=BuiltinScript.CONDITIONAL_HASH_SET_HIGHER.value,
        key_arity=1,
        body=CONDITIONAL_HASH_SET_HIGHER_SCRIPT,
    ),
    BuiltinScript.CONDITIONAL_HASH_SET_LOWER: ScriptDefinition(
        name=BuiltinScript.CONDITIONAL_HASH_SET_LOWER.value,
        key_arity=1,
        body=CONDITIONAL_HASH_SET_LOWER_SCRIPT,
    ),
    BuiltinScript.BOUNDING_BOX_MEMBERSHIP: ScriptDefinition(
        name=BuiltinScript.BOUNDING_BOX_MEMBERSHIP.value,
        key_arity=1,
        body=BOUNDING_BOX_MEMBERSHIP_SCRIPT,
    ),
}
