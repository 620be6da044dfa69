"""
Cluster topology inspection.

Connects to one seed node and compares what the cluster reports with the
configured node list. Used by the ``cluster-check`` CLI command before
opening a cluster connection.

Usage:
    report = await inspect_cluster(client, [NodeAddress(host="10.0.0.1", port=7000)])
    if not report.healthy:
        print(report.missing_nodes)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from redis_service.config.logging import get_logger
from redis_service.connection.options import NodeAddress, parse_node

logger = get_logger(__name__)

ROLE_MASTER = "master"
ROLE_REPLICA = "slave"

STATUS_OK = "ok"
STATUS_FAILED = "failed"
STATUS_HANDSHAKE = "handshake"


@dataclass(frozen=True, slots=True)
class ClusterNodeInfo:
    """One line of CLUSTER NODES."""

    id: str
    host: str
    port: int
    role: str
    status: str
    flags: tuple[str, ...] = ()

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_master(self) -> bool:
        return self.role == ROLE_MASTER


@dataclass
class ClusterTopologyReport:
    """What the cluster reported, and how it differs from the configuration."""

    state: str | None
    info: dict[str, str] = field(default_factory=dict)
    nodes: list[ClusterNodeInfo] = field(default_factory=list)
    missing_nodes: list[str] = field(default_factory=list)

    @property
    def problem_nodes(self) -> list[ClusterNodeInfo]:
        return [node for node in self.nodes if node.status != STATUS_OK]

    @property
    def healthy(self) -> bool:
        return self.state == STATUS_OK and not self.missing_nodes and not self.problem_nodes

    def to_dict(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "size": self.info.get("cluster_size"),
            "slots_assigned": self.info.get("cluster_slots_assigned"),
            "slots_ok": self.info.get("cluster_slots_ok"),
            "nodes": [
                {"id": n.id, "address": n.address, "role": n.role, "status": n.status}
                for n in self.nodes
            ],
            "missing_nodes": list(self.missing_nodes),
        }


def _to_text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def parse_cluster_info(raw: str | bytes | Mapping[str, Any]) -> dict[str, str]:
    """
    Parse CLUSTER INFO output into a dict of strings.

    Accepts the raw text or the dict some drivers already return.
    """
    if isinstance(raw, Mapping):
        return {_to_text(k): _to_text(v) for k, v in raw.items()}

    info: dict[str, str] = {}
    for line in _to_text(raw).splitlines():
        key, sep, value = line.partition(":")
        if sep:
            info[key.strip()] = value.strip()
    return info


def _node_status(flags: Iterable[str]) -> str:
    flags = set(flags)
    if "fail" in flags:
        return STATUS_FAILED
    if "handshake" in flags:
        return STATUS_HANDSHAKE
    return STATUS_OK


def _node_role(flags: Iterable[str]) -> str:
    return ROLE_MASTER if "master" in set(flags) else ROLE_REPLICA


def _split_address(address: str) -> tuple[str, int]:
    # "host:port@cport[,hostname]"
    address = address.split("@", 1)[0]
    host, _, port = address.rpartition(":")
    return host, int(port) if port.isdigit() else 0


def parse_cluster_nodes(raw: str | bytes | Mapping[str, Any]) -> list[ClusterNodeInfo]:
    """
    Parse CLUSTER NODES output.

    Each text line reads ``<id> <host:port@cport> <flags> ...``. A dict keyed
    by address with ``node_id`` and ``flags`` entries is also accepted.
    """
    nodes: list[ClusterNodeInfo] = []

    if isinstance(raw, Mapping):
        for address, data in raw.items():
            host, port = _split_address(_to_text(address))
            flags = data.get("flags", "")
            flags = tuple(flags.split(",")) if isinstance(flags, str) else tuple(flags)
            nodes.append(ClusterNodeInfo(
                id=_to_text(data.get("node_id", "")),
                host=host,
                port=port,
                role=_node_role(flags),
                status=_node_status(flags),
                flags=flags,
            ))
        return nodes

    for line in _to_text(raw).splitlines():
        parts = line.split()
        if len(parts) < 3:
            continue
        host, port = _split_address(parts[1])
        flags = tuple(parts[2].split(","))
        nodes.append(ClusterNodeInfo(
            id=parts[0],
            host=host,
            port=port,
            role=_node_role(flags),
            status=_node_status(flags),
            flags=flags,
        ))
    return nodes


def compare_nodes(
    configured: Iterable[Any],
    actual: Iterable[ClusterNodeInfo],
) -> list[str]:
    """Configured ``host:port`` addresses the cluster does not know about, in order."""
    known = {node.address for node in actual}
    missing: list[str] = []
    for node in configured:
        address = str(parse_node(node))
        if address not in known and address not in missing:
            missing.append(address)
    return missing


async def inspect_cluster(client: Any, configured: Iterable[Any] = ()) -> ClusterTopologyReport:
    """
    Read CLUSTER INFO and CLUSTER NODES from a node and compare with the configuration.

    Args:
        client: A single-node redis client connected to any cluster member.
        configured: Nodes the application is configured with.
    """
    info = parse_cluster_info(await client.execute_command("CLUSTER INFO"))
    nodes = parse_cluster_nodes(await client.execute_command("CLUSTER NODES"))
    configured_nodes: list[NodeAddress] = [parse_node(node) for node in configured]
    missing = compare_nodes(configured_nodes, nodes)

    report = ClusterTopologyReport(
        state=info.get("cluster_state"),
        info=info,
        nodes=nodes,
        missing_nodes=missing,
    )

    if report.state != STATUS_OK:
        logger.error("Cluster state is not ok", state=report.state)
    for node in report.problem_nodes:
        logger.warning("Cluster node reports a problem", node=node.address, status=node.status)
    for address in missing:
        logger.warning("Configured node not found in cluster", node=address)

    return report
