"""
Exception hierarchy for the Redis service.

Validation errors (duplicate names, bad topology, bad script definitions,
incomplete loggers) are raised synchronously, before any I/O takes place.
Transport errors wrap whatever the driver raised while connecting.

Usage:
    from redis_service.errors import DuplicateNameError, NotFoundError

    try:
        conn = registry.get_connection("cache")
    except NotFoundError:
        ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Sequence

if TYPE_CHECKING:
    from redis_service.connection.registry import CloseAllResult


class RedisServiceError(Exception):
    """Base class for every error raised by this package."""


# =============================================================================
# Validation errors
# =============================================================================


class DuplicateNameError(RedisServiceError):
    """A connection with this name is already reserved or active."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Connection {name!r} already exists")


class NotFoundError(RedisServiceError, LookupError):
    """No active connection is registered under this name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Connection {name!r} not found")


class InvalidTopologyError(RedisServiceError, ValueError):
    """Cluster options do not describe a usable topology."""


class InvalidDefinitionError(RedisServiceError, ValueError):
    """A script definition is malformed."""

    def __init__(self, name: str, reason: str):
        self.script_name = name
        self.reason = reason
        super().__init__(f"Invalid script definition for {name!r}: {reason}")


class MissingLoggerMethodError(RedisServiceError, TypeError):
    """A custom logger lacks one or more of the required methods."""

    def __init__(self, missing: Sequence[str]):
        self.missing = tuple(missing)
        super().__init__(
            f"Custom logger is missing required methods: {', '.join(self.missing)}"
        )


# =============================================================================
# Runtime errors
# =============================================================================


class TransportError(RedisServiceError, ConnectionError):
    """The backing store could not be reached, authenticated against or timed out."""

    def __init__(self, name: str, cause: BaseException | None = None):
        self.name = name
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Connection {name!r} failed{detail}")


class ConnectionOfflineError(RedisServiceError, ConnectionError):
    """A command was issued while offline and the offline queue is disabled."""

    def __init__(self, name: str, state: str):
        self.name = name
        self.state = state
        super().__init__(
            f"Connection {name!r} is {state} and its offline queue is disabled"
        )


class UnknownScriptError(RedisServiceError, LookupError):
    """The script was not bound to this connection."""

    def __init__(self, connection: str, script: str):
        self.connection = connection
        self.script = script
        super().__init__(f"Script {script!r} is not bound on connection {connection!r}")


class ScriptArityError(RedisServiceError, ValueError):
    """A script was invoked with the wrong number of keys."""

    def __init__(self, script: str, expected: int, got: int):
        self.script = script
        self.expected = expected
        self.got = got
        super().__init__(f"Script {script!r} expects {expected} key(s), got {got}")


class ScriptExecutionError(RedisServiceError):
    """The server rejected a script invocation."""

    def __init__(
        self,
        script: str,
        cause: BaseException,
        keys: Sequence[Any] = (),
        args: Sequence[Any] = (),
    ):
        self.script = script
        self.cause = cause
        self.keys = list(keys)
        self.script_args = list(args)
        super().__init__(
            f"Script {script!r} failed with keys={self.keys!r} args={self.script_args!r}: {cause}"
        )


class CloseAllError(RedisServiceError):
    """One or more connections failed to shut down during close_all()."""

    def __init__(self, result: "CloseAllResult"):
        self.result = result
        failed = ", ".join(outcome.name for outcome in result.failed)
        super().__init__(f"Failed to close connection(s): {failed}")


class InvalidStateTransitionError(RedisServiceError, RuntimeError):
    """A connection was asked to move to a state it cannot reach."""

    def __init__(self, name: str, current: Any, target: Any):
        self.name = name
        self.current = current
        self.target = target
        super().__init__(f"Connection {name!r} cannot move from {current} to {target}")
