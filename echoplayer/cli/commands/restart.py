import typer

from echoplayer.cli import core


def restart():
    """
    Restart the media server through the running control API.
    Also the way out of the error state after repeated crashes.
    """
    if not core.is_runtime_active():
        typer.echo(typer.style("Control API is not running. Start it with `echoplayer serve`.", fg=typer.colors.RED))
        raise typer.Exit(1)

    typer.echo("Restarting media server...")
    info = core.runtime_call("restart_media_server")
    if not info or not info.get("ok"):
        code = info.get("error_code") if info else "unreachable"
        typer.echo(typer.style(f"Failed to restart media server ({code}).", fg=typer.colors.RED))
        raise typer.Exit(1)

    typer.echo(f"Media server restarted on port {info.get('port')}.")
