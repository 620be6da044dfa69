"""
Lua script catalogue.

- definition.py: immutable script definition
- lua_scripts.py: built-in atomic scripts
- registry.py: named script registry
- commands.py: typed helpers for the built-ins
"""

from redis_service.scripts.definition import ScriptDefinition
from redis_service.scripts.lua_scripts import BUILTIN_SCRIPTS, BuiltinScript
from redis_service.scripts.registry import ScriptRegistry, build_definition, default_registry
from redis_service.scripts.commands import (
    Direction,
    bounding_box_keys,
    bounding_box_membership,
    capped_sorted_set_add,
    conditional_hash_set,
    expire_if_no_ttl,
    index_bounding_box,
    remove_from_bounding_box,
)

__all__ = [
    "BUILTIN_SCRIPTS",
    "BuiltinScript",
    "Direction",
    "ScriptDefinition",
    "ScriptRegistry",
    "bounding_box_keys",
    "bounding_box_membership",
    "build_definition",
    "capped_sorted_set_add",
    "conditional_hash_set",
    "default_registry",
    "expire_if_no_ttl",
    "index_bounding_box",
    "remove_from_bounding_box",
]
