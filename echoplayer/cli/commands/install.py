import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, DownloadColumn, Progress, TextColumn, TransferSpeedColumn

from echoplayer.cli import core
from echoplayer.kernel.contracts import DownloadProgress, Tool

console = Console()


def install(
    tool: Tool = typer.Argument(..., help="Binary to install."),
    platform: Optional[str] = typer.Option(None, help="Target platform (win32, darwin, linux)."),
    arch: Optional[str] = typer.Option(None, help="Target architecture (x64, arm64)."),
):
    """
    Download and install a media binary. Ctrl-C cancels the download.
    """
    manager = core.get_services().manager_for(tool)

    if manager.is_installed(tool, platform, arch):
        console.print(f"[green]{tool.value} is already installed:[/green] {manager.get_executable_path(tool, platform, arch)}")
        return

    with Progress(
        TextColumn("[bold blue]{task.description}"),
        BarColumn(),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    ) as bar:
        task_id = bar.add_task(tool.value, total=None)

        def on_progress(progress: DownloadProgress) -> None:
            bar.update(
                task_id,
                completed=progress.downloaded,
                total=progress.total or None,
                description=f"{tool.value} [{progress.status.value}]",
            )

        async def acquire():
            job = asyncio.ensure_future(manager.acquire(tool, platform, arch, on_progress))
            try:
                return await asyncio.shield(job)
            except asyncio.CancelledError:
                manager.cancel(tool, platform, arch)
                return await job

        try:
            result = core.run_async(acquire())
        except KeyboardInterrupt:
            console.print("[yellow]Download cancelled.[/yellow]")
            raise typer.Exit(130)

    if result.ok:
        console.print(f"[green]Installed {tool.value}:[/green] {result.path}")
        return

    console.print(f"[red]Failed to install {tool.value}: {result.error_code}[/red]")
    raise typer.Exit(1)
