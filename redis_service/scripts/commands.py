"""
Typed helpers for the built-in scripts.

Each helper dispatches through ``Connection.run_script`` so key prefixing,
arity checks and error wrapping apply. The connection must have been
created with the corresponding script name.

Usage:
    conn = await registry.create_connection("cache", script_names=[BuiltinScript.EXPIRE_IF_NO_TTL])
    await expire_if_no_ttl(conn, "session:42", 3600)
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any

from redis_service.scripts.lua_scripts import (
    BBOX_LAT_MAX,
    BBOX_LAT_MIN,
    BBOX_LON_MAX,
    BBOX_LON_MIN,
    INDEX_BOUNDING_BOX_SCRIPT,
    REMOVE_FROM_BOUNDING_BOX_SCRIPT,
    BuiltinScript,
)

if TYPE_CHECKING:
    from redis_service.connection.lifecycle import Connection


class Direction(str, Enum):
    """Which way a conditional hash update may move a value."""

    HIGHER = "higher"
    LOWER = "lower"


_CONDITIONAL_SCRIPTS = {
    Direction.HIGHER: BuiltinScript.CONDITIONAL_HASH_SET_HIGHER,
    Direction.LOWER: BuiltinScript.CONDITIONAL_HASH_SET_LOWER,
}


async def capped_sorted_set_add(
    conn: "Connection",
    key: str,
    score: float,
    member: str,
    limit: int,
    trim_count: int = 1,
) -> int:
    """
    Add a member, then trim the lowest scores once the set exceeds ``limit``.

    Returns:
        Number of members removed.
    """
    if limit < 0:
        raise ValueError("limit must be >= 0")
    if trim_count < 1:
        raise ValueError("trim_count must be >= 1")
    return await conn.run_script(
        BuiltinScript.CAPPED_SORTED_SET_ADD.value,
        [key],
        [score, member, limit, trim_count],
    )


async def expire_if_no_ttl(conn: "Connection", key: str, ttl_seconds: int) -> bool:
    """Set a TTL on ``key`` unless it already has one. True if the TTL was set."""
    result = await conn.run_script(BuiltinScript.EXPIRE_IF_NO_TTL.value, [key], [ttl_seconds])
    return bool(result)


async def conditional_hash_set(
    conn: "Connection",
    key: str,
    field: str,
    value: float,
    direction: Direction | str = Direction.HIGHER,
) -> int | float:
    """
    Set a numeric hash field only if it moves in ``direction``.

    Returns:
        The value when the field was absent, the delta (new - old) on update,
        0 when nothing changed. Integral results come back as ``int``.
    """
    script = _CONDITIONAL_SCRIPTS[Direction(direction)]
    result = await conn.run_script(script.value, [key], [field, value])
    number = float(result)
    return int(number) if number.is_integer() else number


async def bounding_box_membership(
    conn: "Connection",
    base_key: str,
    lat: float,
    lon: float,
) -> list[str]:
    """Members of the bounding-box index under ``base_key`` whose box encloses the point."""
    result = await conn.run_script(BuiltinScript.BOUNDING_BOX_MEMBERSHIP.value, [base_key], [lat, lon])
    return list(result or [])


def bounding_box_keys(base_key: str) -> dict[str, str]:
    """The four auxiliary sorted sets behind a bounding-box index."""
    return {
        "lat_min": f"{base_key}{BBOX_LAT_MIN}",
        "lat_max": f"{base_key}{BBOX_LAT_MAX}",
        "lon_min": f"{base_key}{BBOX_LON_MIN}",
        "lon_max": f"{base_key}{BBOX_LON_MAX}",
    }


async def index_bounding_box(
    client: Any,
    base_key: str,
    member: str,
    lat_min: float,
    lat_max: float,
    lon_min: float,
    lon_max: float,
) -> None:
    """
    Register or move ``member``'s bounding box in the index under ``base_key``.

    The four auxiliary sorted sets are written by one script, so the update
    is atomic on a single node and on a cluster. On a cluster, put a hash tag
    in ``base_key`` (e.g. ``{zones}``) so the four keys share a slot.
    ``client`` is the raw driver (``conn.client``), so any key prefix must
    already be part of ``base_key``.
    """
    if lat_min > lat_max:
        raise ValueError("lat_min must be <= lat_max")
    if lon_min > lon_max:
        raise ValueError("lon_min must be <= lon_max")

    keys = bounding_box_keys(base_key)
    script = client.register_script(INDEX_BOUNDING_BOX_SCRIPT)
    await script(
        keys=[keys["lat_min"], keys["lat_max"], keys["lon_min"], keys["lon_max"]],
        args=[member, lat_min, lat_max, lon_min, lon_max],
    )


async def remove_from_bounding_box(client: Any, base_key: str, member: str) -> None:
    """Drop ``member`` from every auxiliary set of the index."""
    script = client.register_script(REMOVE_FROM_BOUNDING_BOX_SCRIPT)
    await script(keys=list(bounding_box_keys(base_key).values()), args=[member])
