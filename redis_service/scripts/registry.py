"""
In-memory registry of named Lua scripts.

The registry has no knowledge of connections: the lifecycle controller asks
it for definitions when a connection becomes usable. Definitions live only
for the lifetime of the process and are rebuilt at startup.

Usage:
    registry = ScriptRegistry()
    registry.register("IncrementAndGet", {"key_arity": 1, "body": LUA})
    registry.get_many(["IncrementAndGet", "ExpireIfNoTTL"])
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping

from redis_service.config.logging import get_logger
from redis_service.errors import InvalidDefinitionError
from redis_service.scripts.definition import ScriptDefinition
from redis_service.scripts.lua_scripts import BUILTIN_SCRIPTS

logger = get_logger(__name__)

# Accepted spellings of the definition fields when registering from a mapping
_ARITY_FIELDS = ("key_arity", "keyArity", "numberOfKeys")
_BODY_FIELDS = ("body", "lua")


def _first_present(data: Mapping[str, Any], fields: tuple[str, ...]) -> Any:
    for field_name in fields:
        if field_name in data:
            return data[field_name]
    return None


def build_definition(name: str, definition: ScriptDefinition | Mapping[str, Any]) -> ScriptDefinition:
    """
    Validate a definition and return it bound to ``name``.

    Raises:
        InvalidDefinitionError: If the name is empty, the key arity is not a
            positive integer or the body is empty.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidDefinitionError(str(name), "name must be a non-empty string")

    if isinstance(definition, ScriptDefinition):
        key_arity: Any = definition.key_arity
        body: Any = definition.body
    elif isinstance(definition, Mapping):
        key_arity = _first_present(definition, _ARITY_FIELDS)
        body = _first_present(definition, _BODY_FIELDS)
    else:
        raise InvalidDefinitionError(name, "definition must be a ScriptDefinition or a mapping")

    # bool is an int subclass but never a meaningful arity
    if isinstance(key_arity, bool) or not isinstance(key_arity, int) or key_arity < 1:
        raise InvalidDefinitionError(name, f"key arity must be a positive integer, got {key_arity!r}")

    if not isinstance(body, str) or not body.strip():
        raise InvalidDefinitionError(name, "script body must be non-empty")

    return ScriptDefinition(name=name, key_arity=key_arity, body=body)


class ScriptRegistry:
    """
    Named Lua script definitions, last write wins.

    A fresh registry contains the built-in catalogue unless constructed with
    ``include_builtins=False``.
    """

    def __init__(self, include_builtins: bool = True) -> None:
        self._scripts: dict[str, ScriptDefinition] = {}
        if include_builtins:
            self.register_builtins()

    def register_builtins(self) -> None:
        """(Re-)register every built-in script."""
        for definition in BUILTIN_SCRIPTS.values():
            self._scripts[definition.name] = definition

    def register(
        self,
        name: str,
        definition: ScriptDefinition | Mapping[str, Any],
    ) -> ScriptDefinition:
        """
        Register or overwrite a script.

        Args:
            name: Script name.
            definition: A ScriptDefinition, or a mapping with ``key_arity``
                (also ``keyArity``/``numberOfKeys``) and ``body`` (also ``lua``).

        Returns:
            The stored definition.

        Raises:
            InvalidDefinitionError: If the definition is malformed.
        """
        try:
            stored = build_definition(name, definition)
        except InvalidDefinitionError as e:
            logger.warning("Rejected script definition", script=name, reason=e.reason)
            raise

        if name in self._scripts:
            logger.debug("Overwriting script definition", script=name)
        self._scripts[name] = stored
        return stored

    def unregister(self, name: str) -> bool:
        """Remove a script. Returns False if it was not registered."""
        return self._scripts.pop(name, None) is not None

    def get(self, name: str) -> ScriptDefinition | None:
        """Get a script by name, or None if unknown."""
        return self._scripts.get(name)

    def get_many(self, names: Iterable[str]) -> dict[str, ScriptDefinition]:
        """
        Get several scripts by name.

        Unknown names are silently omitted; compare the result's keys with the
        request when completeness matters.
        """
        result: dict[str, ScriptDefinition] = {}
        for name in names:
            definition = self._scripts.get(name)
            if definition is not None:
                result[name] = definition
        return result

    def get_available(self) -> list[str]:
        """All registered script names, in registration order."""
        return list(self._scripts)

    def __contains__(self, name: object) -> bool:
        return name in self._scripts

    def __len__(self) -> int:
        return len(self._scripts)


def default_registry() -> ScriptRegistry:
    """Create a registry pre-loaded with the built-in scripts."""
    return ScriptRegistry()
