"""Immutable script definition shared by the registry and the built-in catalogue."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ScriptDefinition:
    """
    A named Lua script and the number of KEYS it expects.

    Attributes:
        name: Name the script is registered and invoked under.
        key_arity: How many leading arguments are keys (always >= 1).
        body: Lua source executed on the server.
    """

    name: str
    key_arity: int
    body: str
