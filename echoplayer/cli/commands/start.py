import typer
from rich.console import Console

from echoplayer.cli import core

console = Console()


def start():
    """
    Start the media server through the running control API.
    """
    if not core.is_runtime_active():
        typer.echo(typer.style("Control API is not running. Start it with `echoplayer serve`.", fg=typer.colors.RED))
        raise typer.Exit(1)

    console.print("Starting media server...")
    info = core.runtime_call("start_media_server")

    if info and info.get("ok"):
        typer.echo(f"Media server running on port {info.get('port')}.")
    elif info and info.get("status") == "running":
        typer.echo(f"Media server already running on port {info.get('port')}.")
    else:
        code = info.get("error_code") if info else "unreachable"
        typer.echo(typer.style(f"Error: Failed to start media server ({code}).", fg=typer.colors.RED))
        raise typer.Exit(1)
