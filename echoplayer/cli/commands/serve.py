import typer

from echoplayer.adapters.http import fastapi_server
from echoplayer.internal.constants import RUNTIME_HOST, RUNTIME_PORT


def serve(
    host: str = typer.Option(RUNTIME_HOST, help="Host to bind the control API to."),
    port: int = typer.Option(RUNTIME_PORT, help="Port to bind the control API to."),
):
    """
    Run the local control API in the foreground.
    """
    typer.echo(f"Serving control API on http://{host}:{port}")
    fastapi_server.main(host=host, port=port)
