from typing import Optional

import typer

from echoplayer.cli import core
from echoplayer.kernel.contracts import BootstrapStage, InstallProgress


def bootstrap(
    python: Optional[str] = typer.Option(None, "--python", help="Python version for the virtual environment."),
    reinstall: bool = typer.Option(False, "--reinstall", help="Delete the virtual environment first."),
):
    """
    Prepare the media server environment: toolchain, virtual environment, dependencies.
    """
    services = core.get_services()
    typer.echo(f"Media server project: {services.bootstrap.project_dir}")

    def on_progress(progress: InstallProgress) -> None:
        color = typer.colors.RED if progress.stage == BootstrapStage.ERROR else typer.colors.BLUE
        line = f"[{progress.percent:>3}%] {progress.stage.value}"
        if progress.error:
            line += f" ({progress.error})"
        typer.echo(typer.style(line, fg=color))

    if reinstall:
        services.bootstrap.remove_venv()
    ok = core.run_async(services.bootstrap.initialize(on_progress, python_version=python))

    if not ok:
        typer.echo(typer.style("Environment bootstrap failed. Check the logs.", fg=typer.colors.RED))
        raise typer.Exit(1)
    typer.echo(typer.style("Environment ready.", fg=typer.colors.GREEN))
