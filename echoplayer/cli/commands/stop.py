import typer

from echoplayer.cli import core


def stop():
    """
    Stop the media server through the running control API.
    """
    if not core.is_runtime_active():
        typer.echo("Control API is not running; nothing to stop.")
        return

    info = core.runtime_call("stop_media_server")
    if info is None:
        typer.echo(typer.style("Failed to stop media server. Check the logs.", fg=typer.colors.RED))
        raise typer.Exit(1)
    typer.echo("Media server stopped.")
