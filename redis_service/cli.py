"""
redis-service CLI.

Operator commands for inspecting the script catalogue and checking
connectivity to a single node or a cluster.
"""

import asyncio
import time
from typing import List, Optional

import redis.asyncio as redis
import typer
from rich.console import Console
from rich.table import Table

from redis_service.config.logging import setup_logging
from redis_service.config.settings import settings
from redis_service.connection.options import parse_node
from redis_service.connection.registry import ConnectionRegistry
from redis_service.connection.topology import inspect_cluster
from redis_service.errors import RedisServiceError
from redis_service.scripts.registry import ScriptRegistry

app = typer.Typer(
    name="redis-service",
    help="Redis connection and Lua script service CLI",
    add_completion=False,
)
console = Console()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log to stdout"),
):
    """Redis connection and Lua script service CLI."""
    if verbose:
        setup_logging()


# =============================================================================
# Script Commands
# =============================================================================

@app.command()
def scripts(
    show_body: bool = typer.Option(False, "--body", "-b", help="Print each script's Lua source"),
):
    """List the built-in Lua scripts."""
    registry = ScriptRegistry()

    table = Table(title="Registered scripts")
    table.add_column("Name", style="cyan")
    table.add_column("Keys", style="green", justify="right")
    table.add_column("Lines", justify="right")

    for name in registry.get_available():
        definition = registry.get(name)
        table.add_row(name, str(definition.key_arity), str(len(definition.body.strip().splitlines())))

    console.print(table)

    if show_body:
        for name in registry.get_available():
            console.rule(f"[cyan]{name}[/cyan]")
            console.print(registry.get(name).body.strip(), highlight=False)


# =============================================================================
# Connectivity Commands
# =============================================================================

@app.command()
def ping(
    host: str = typer.Option(settings.default_host, "--host", "-h", help="Server host"),
    port: int = typer.Option(settings.default_port, "--port", "-p", help="Server port"),
    db: int = typer.Option(settings.default_db, "--db", help="Logical database"),
    password: Optional[str] = typer.Option(None, "--password", envvar="REDIS_SERVICE_PASSWORD"),
    count: int = typer.Option(3, "--count", "-c", min=1, help="Number of pings"),
):
    """Open a connection through the registry and measure PING latency."""

    async def _ping() -> None:
        registry = ConnectionRegistry()
        options = {"host": host, "port": port, "db": db, "password": password}
        conn = await registry.create_connection("cli", options)
        try:
            table = Table(title=f"PING {host}:{port}/{db}")
            table.add_column("#", justify="right")
            table.add_column("Latency (ms)", style="green", justify="right")
            for i in range(1, count + 1):
                start = time.perf_counter()
                await conn.ping()
                table.add_row(str(i), f"{(time.perf_counter() - start) * 1000:.2f}")
            console.print(table)
        finally:
            await registry.close_all()

    try:
        asyncio.run(_ping())
    except (RedisServiceError, OSError) as e:
        console.print(f"[red]✗ Ping failed: {e}[/red]")
        raise typer.Exit(1)
    console.print("[green]✓ Server reachable[/green]")


@app.command()
def cluster_check(
    nodes: List[str] = typer.Argument(..., help="Cluster nodes as host:port"),
    password: Optional[str] = typer.Option(None, "--password", envvar="REDIS_SERVICE_PASSWORD"),
    timeout: float = typer.Option(5.0, "--timeout", "-t", help="Connect timeout in seconds"),
):
    """Validate cluster state and check that every configured node is known."""
    try:
        configured = [parse_node(node) for node in nodes]
    except RedisServiceError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(2)

    async def _check():
        seed = configured[0]
        client = redis.Redis(
            host=seed.host,
            port=seed.port,
            password=password,
            socket_connect_timeout=timeout,
            decode_responses=True,
        )
        try:
            return await inspect_cluster(client, configured)
        finally:
            await client.aclose()

    try:
        report = asyncio.run(_check())
    except (redis.RedisError, OSError) as e:
        console.print(f"[red]✗ Failed to read cluster topology: {e}[/red]")
        raise typer.Exit(1)

    state_style = "green" if report.state == "ok" else "red"
    console.print(f"Cluster state: [{state_style}]{report.state}[/{state_style}]")
    console.print(f"Cluster size: {report.info.get('cluster_size', '?')}")
    console.print(f"Slots assigned: {report.info.get('cluster_slots_assigned', '?')}")
    console.print(f"Slots ok: {report.info.get('cluster_slots_ok', '?')}")

    table = Table(title="Cluster nodes")
    table.add_column("ID", style="cyan")
    table.add_column("Address")
    table.add_column("Role")
    table.add_column("Status")
    for node in report.nodes:
        status_style = "green" if node.status == "ok" else "red"
        table.add_row(
            f"{node.id[:8]}...",
            node.address,
            node.role,
            f"[{status_style}]{node.status}[/{status_style}]",
        )
    console.print(table)

    for address in report.missing_nodes:
        console.print(f"[yellow]! Node {address} provided in config but not found in cluster[/yellow]")

    if report.healthy:
        console.print("[green]✓ Cluster topology OK[/green]")
    else:
        console.print("[red]✗ Cluster topology has problems[/red]")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
