import json
from typing import Optional

import httpx
import typer
import uvicorn

from . import api_client
from .app import create_app
from .config import Settings, setup_logging
from .network import get_local_address

app = typer.Typer(help="PeerDrop LAN discovery and signaling node")

DEFAULT_SERVER = "http://localhost:3001"


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Interface to bind"),
    port: Optional[int] = typer.Option(None, help="Control-plane HTTP port"),
    discovery_port: Optional[int] = typer.Option(None, help="UDP discovery port"),
    address: Optional[str] = typer.Option(
        None, help="Address to advertise instead of the detected one"
    ),
    name: Optional[str] = typer.Option(None, help="Display name sent in beacons"),
    no_discovery: bool = typer.Option(False, "--no-discovery", help="Disable UDP discovery"),
    log_level: Optional[str] = typer.Option(None, help="Logging level"),
) -> None:
    """Run a node until interrupted."""
    settings = Settings.from_env(
        host=host,
        control_port=port,
        discovery_port=discovery_port,
        advertised_address=address,
        display_name=name,
        discovery_enabled=False if no_discovery else None,
        log_level=log_level,
    )
    setup_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.control_port)


@app.command("address")
def show_address() -> None:
    """Print the LAN address this host would advertise."""
    typer.echo(get_local_address())


@app.command()
def health(server: str = typer.Option(DEFAULT_SERVER, help="Node URL")) -> None:
    """Check that a node is up."""
    try:
        result = api_client.health(server)
    except httpx.HTTPError as e:
        typer.echo(f"Node unreachable: {e}")
        raise typer.Exit(1)
    typer.echo(f"{result['status']} at {result['localAddress']}")


def _print_peers(peers) -> None:
    if not peers:
        typer.echo("No peers found.")
        return
    for peer in peers:
        typer.echo(
            f"{peer['displayName']} @ {peer['address']}:{peer['controlPort']} "
            f"(last seen {peer['lastSeen']})"
        )


@app.command()
def peers(server: str = typer.Option(DEFAULT_SERVER, help="Node URL")) -> None:
    """List the peers a node currently knows."""
    result = api_client.list_peers(server)
    _print_peers(result["peers"])


@app.command()
def discover(server: str = typer.Option(DEFAULT_SERVER, help="Node URL")) -> None:
    """Run a discovery round on a node and list the result."""
    result = api_client.discover(server)
    typer.echo(f"Local address: {result['localAddress']}")
    _print_peers(result["peers"])


@app.command()
def poll(
    address: str = typer.Option(..., help="Address whose queued messages to fetch"),
    server: str = typer.Option(DEFAULT_SERVER, help="Node URL"),
) -> None:
    """Drain the signaling messages a node queued for ADDRESS."""
    result = api_client.poll_signaling(address, server)
    if not result["count"]:
        typer.echo("No pending messages.")
        raise typer.Exit()
    for message in result["messages"]:
        typer.echo(json.dumps(message))


if __name__ == "__main__":
    app()
