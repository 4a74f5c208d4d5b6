import importlib.metadata

import typer

from echoplayer.internal.logging import get_logger

logger = get_logger(__name__)


def version():
    """
    Show the EchoPlayer runtime version.
    """
    try:
        package_version = importlib.metadata.version("echoplayer-runtime")
    except importlib.metadata.PackageNotFoundError:
        typer.echo("echoplayer-runtime is not installed or version metadata not found.")
        typer.echo("Please install the package first (e.g., pip install -e .)")
        logger.warning("echoplayer-runtime package version not found")
        raise typer.Exit(1)
    typer.echo(f"echoplayer-runtime version: {package_version}")
