"""
Connection and cluster option models.

User options are merged over defaults taken from Settings. Both snake_case
and camelCase field names are accepted (``key_prefix`` or ``keyPrefix``);
unrecognized fields are kept and passed through to the driver untouched.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Callable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from redis_service.config.logging import validate_logger
from redis_service.config.settings import settings
from redis_service.connection.retry import RetryStrategy, linear_retry_strategy
from redis_service.errors import InvalidTopologyError


def default_retry_strategy() -> RetryStrategy:
    """Linear backoff capped by settings (100ms steps up to 2000ms by default)."""
    return linear_retry_strategy(
        step_ms=settings.retry_delay_step_ms,
        max_delay_ms=settings.retry_max_delay_ms,
    )


class NodeAddress(BaseModel):
    """One cluster seed node."""

    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


class ConnectionOptions(BaseModel):
    """
    Options for a single-node connection.

    Attributes:
        host, port, db: Server address and logical database.
        key_prefix: Prepended to every key passed to a bound script.
        password, username: Credentials handed to the driver.
        tls: True, or a mapping of ``ssl_*`` driver options without the prefix.
        enable_auto_pipelining: Accepted for compatibility; the driver
            pipelines explicitly via ``client.pipeline()``.
        show_friendly_error_stack: Wrap script errors with script name, keys and args.
        enable_offline_queue: When False, bound scripts fail fast while the
            connection is not CONNECTED.
        connect_timeout, command_timeout: Seconds, enforced by the driver.
        retry_strategy: attempt -> delay ms, or None to stop reconnecting.
        logger: Custom logger used for this connection's lifecycle messages.
    """

    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
        arbitrary_types_allowed=True,
    )

    host: str = Field(default_factory=lambda: settings.default_host)
    port: int = Field(default_factory=lambda: settings.default_port, ge=1, le=65535)
    db: int = Field(default_factory=lambda: settings.default_db, ge=0)
    key_prefix: str = ""
    password: Optional[str] = None
    username: Optional[str] = None
    tls: bool | dict[str, Any] = False
    client_name: Optional[str] = None
    enable_auto_pipelining: bool = Field(default_factory=lambda: settings.enable_auto_pipelining)
    show_friendly_error_stack: bool = Field(default_factory=lambda: settings.show_friendly_error_stack)
    enable_offline_queue: bool = Field(default_factory=lambda: settings.enable_offline_queue)
    connect_timeout: Optional[float] = Field(default_factory=lambda: settings.connect_timeout)
    command_timeout: Optional[float] = Field(default_factory=lambda: settings.command_timeout)
    retry_strategy: Optional[Callable[[int], Optional[float]]] = Field(
        default_factory=default_retry_strategy
    )
    logger: Any = None

    @field_validator("logger")
    @classmethod
    def _validate_logger(cls, value: Any) -> Any:
        # MissingLoggerMethodError is a TypeError, so pydantic lets it through
        if value is not None:
            validate_logger(value)
        return value

    @property
    def driver_extras(self) -> dict[str, Any]:
        """Unrecognized options, passed through to the driver."""
        return dict(self.model_extra or {})


class ClusterOptions(ConnectionOptions):
    """
    Options for a cluster connection.

    Connection-level fields apply to every node. ``scale_reads`` follows the
    usual vocabulary: ``master`` reads from primaries only, ``slave`` and
    ``all`` allow replica reads.
    """

    nodes: tuple[NodeAddress, ...] = Field(min_length=1)
    scale_reads: Literal["master", "slave", "all"] = Field(
        default_factory=lambda: settings.cluster_scale_reads
    )
    max_redirections: int = Field(
        default_factory=lambda: settings.cluster_max_redirections, ge=0
    )
    cluster_retry_strategy: Optional[Callable[[int], Optional[float]]] = Field(
        default_factory=default_retry_strategy
    )


# =============================================================================
# Merging
# =============================================================================


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"]) or "options"
        parts.append(f"{location}: {item['msg']}")
    return "; ".join(parts)


def _check_logger(custom_logger: Any) -> None:
    if custom_logger is not None:
        validate_logger(custom_logger)


def merge_connection_options(
    options: ConnectionOptions | Mapping[str, Any] | None = None,
) -> ConnectionOptions:
    """
    Merge user options over the single-node defaults.

    Raises:
        InvalidTopologyError: If a recognized option has an invalid value.
        MissingLoggerMethodError: If ``logger`` lacks a required method.
    """
    if isinstance(options, ConnectionOptions):
        # The logger may have been replaced after construction
        _check_logger(options.logger)
        return options
    data = dict(options or {})
    _check_logger(data.get("logger"))
    try:
        return ConnectionOptions.model_validate(data)
    except ValidationError as e:
        raise InvalidTopologyError(
            f"Invalid connection options: {_format_validation_error(e)}"
        ) from e


def parse_node(node: Any) -> NodeAddress:
    """
    Coerce a node description into a NodeAddress.

    Accepts a NodeAddress, a ``{"host": ..., "port": ...}`` mapping, a
    ``(host, port)`` pair or a ``"host:port"`` string.
    """
    try:
        if isinstance(node, NodeAddress):
            return node
        if isinstance(node, Mapping):
            return NodeAddress.model_validate(dict(node))
        if isinstance(node, str):
            host, sep, port = node.rpartition(":")
            if not sep:
                raise InvalidTopologyError(f"Node {node!r} must be 'host:port'")
            return NodeAddress(host=host, port=int(port))
        if isinstance(node, Sequence) and len(node) == 2:
            return NodeAddress(host=node[0], port=node[1])
    except (ValidationError, ValueError) as e:
        if isinstance(e, InvalidTopologyError):
            raise
        raise InvalidTopologyError(f"Invalid cluster node {node!r}: {e}") from e
    raise InvalidTopologyError(f"Invalid cluster node {node!r}")


def merge_cluster_options(
    options: ClusterOptions | Mapping[str, Any] | None,
) -> ClusterOptions:
    """
    Merge user options over the cluster defaults.

    Raises:
        InvalidTopologyError: If ``nodes`` is missing, not a sequence, empty,
            contains a malformed node, or another option is invalid.
        MissingLoggerMethodError: If ``logger`` lacks a required method.
    """
    if isinstance(options, ClusterOptions):
        _check_logger(options.logger)
        return options
    if options is None:
        raise InvalidTopologyError("Cluster options require 'nodes'")

    data = dict(options)
    nodes = data.get("nodes")
    if nodes is None:
        raise InvalidTopologyError("Cluster options require 'nodes'")
    if isinstance(nodes, (str, bytes, Mapping)) or not isinstance(nodes, Sequence):
        raise InvalidTopologyError("Cluster 'nodes' must be a sequence of {host, port}")
    if len(nodes) == 0:
        raise InvalidTopologyError("Cluster 'nodes' must not be empty")

    data["nodes"] = tuple(parse_node(node) for node in nodes)
    _check_logger(data.get("logger"))
    try:
        return ClusterOptions.model_validate(data)
    except ValidationError as e:
        raise InvalidTopologyError(
            f"Invalid cluster options: {_format_validation_error(e)}"
        ) from e
