import typer
from rich.console import Console
from rich.table import Table

from echoplayer.cli import core
from echoplayer.kernel.contracts import Arch, Platform

console = Console()


def binaries(
    all_platforms: bool = typer.Option(False, "--all", help="List every supported platform, not just this one."),
):
    """
    List downloadable media binaries and whether they are installed.
    """
    services = core.get_services()
    current = (Platform.current(), Arch.current())

    table = Table(title="Media Binaries")
    table.add_column("Tool", style="cyan", no_wrap=True)
    table.add_column("Platform")
    table.add_column("Version")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Installed")

    rows = 0
    for manager in services.managers:
        for descriptor in manager.list_supported():
            if not all_platforms and (descriptor.platform, descriptor.arch) != current:
                continue
            installed = manager.is_installed(descriptor.tool, descriptor.platform, descriptor.arch)
            table.add_row(
                descriptor.tool.value,
                f"{descriptor.platform.value}-{descriptor.arch.value}",
                descriptor.version,
                f"{descriptor.size / (1024 * 1024):.0f} MB",
                "[green]yes[/green]" if installed else "[dim]no[/dim]",
            )
            rows += 1

    if not rows:
        console.print(f"[red]No binaries available for {current[0].value}-{current[1].value}.[/red]")
        raise typer.Exit(1)
    console.print(table)
