from typing import Optional

import typer

from echoplayer.cli import core
from echoplayer.kernel.contracts import Tool


def uninstall(
    tool: Tool = typer.Argument(..., help="Binary to remove."),
    platform: Optional[str] = typer.Option(None, help="Target platform (win32, darwin, linux)."),
    arch: Optional[str] = typer.Option(None, help="Target architecture (x64, arm64)."),
):
    """
    Remove an installed media binary.
    """
    manager = core.get_services().manager_for(tool)
    if manager.remove(tool, platform, arch):
        typer.echo(f"Removed {tool.value}.")
    else:
        typer.echo(f"{tool.value} is not installed.")
