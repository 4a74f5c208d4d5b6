import json

import typer

from echoplayer.cli import core
from echoplayer.internal.logging import get_logger

logger = get_logger(__name__)


def status():
    """
    Show media server and binary status from the control API.
    """
    typer.echo("Checking EchoPlayer runtime status...")
    media_server = core.runtime_call("media_server")
    if media_server is None:
        typer.echo("Could not connect to the control API. Is `echoplayer serve` running?")
        raise typer.Exit(1)

    binaries = core.runtime_call("binaries") or {}

    typer.echo("\n--- Media Server ---")
    typer.echo(json.dumps(media_server, indent=2))
    typer.echo("--- Binaries ---")
    typer.echo(json.dumps(binaries.get("binaries", []), indent=2))
