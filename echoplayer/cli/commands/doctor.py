import platform
import shutil
import sys

import psutil
import typer

from echoplayer.cli import core
from echoplayer.internal import paths
from echoplayer.kernel.contracts import Arch, Platform, Tool
from echoplayer.runtime.ports import is_port_available
from echoplayer.internal.constants import MEDIA_SERVER_PORT_RANGE


def doctor():
    """
    Check binaries, toolchain, media server environment and system health.
    """
    typer.echo("Running EchoPlayer doctor checks...\n")
    services = core.get_services()
    all_passed = True

    def check(description: str, func):
        nonlocal all_passed
        typer.echo(f"- {description}...", nl=False)
        result, message = func()
        if result:
            typer.echo(f" {typer.style('PASSED', fg=typer.colors.GREEN)}")
        else:
            typer.echo(f" {typer.style('FAILED', fg=typer.colors.RED)}")
            typer.echo(f"  Reason: {message}")
            all_passed = False

    # --- System ---
    typer.echo(typer.style("System Information:", fg=typer.colors.BLUE, bold=True))
    typer.echo(f"  Python Version: {sys.version.split()[0]}")
    typer.echo(f"  Platform: {Platform.current().value}-{Arch.current().value} ({platform.machine()})")
    typer.echo(f"  CPUs: {psutil.cpu_count(logical=True)}")
    typer.echo(f"  Memory: {psutil.virtual_memory().total / (1024 ** 3):.1f} GB")
    typer.echo(f"  App Data: {paths.get_app_data_dir()}")
    typer.echo("")

    # --- Binaries ---
    typer.echo(typer.style("Media Binaries:", fg=typer.colors.BLUE, bold=True))
    for tool in Tool:
        manager = services.manager_for(tool)

        def check_tool(tool=tool, manager=manager):
            if manager.is_installed(tool):
                return True, ""
            if shutil.which(tool.value):
                return True, ""
            return False, f"Not downloaded and not on PATH. Run `echoplayer install {tool.value}`."
        check(f"{tool.value} available", check_tool)
    typer.echo("")

    # --- Environment ---
    typer.echo(typer.style("Media Server Environment:", fg=typer.colors.BLUE, bold=True))
    bootstrap = services.bootstrap
    venv = core.run_async(bootstrap.check_venv())

    check(
        "Project configuration",
        lambda: (venv.has_project_config, f"No pyproject.toml in {bootstrap.project_dir}."),
    )
    check(
        "Virtual environment",
        lambda: (venv.exists, "Missing. Run `echoplayer bootstrap`."),
    )

    def check_port_range():
        low, high = MEDIA_SERVER_PORT_RANGE
        free = sum(1 for port in range(low, high + 1) if is_port_available(port))
        return free > 0, f"No free port in {low}-{high}."
    check("Free media server port", check_port_range)

    typer.echo("\n--- Doctor Check Summary ---")
    if all_passed:
        typer.echo(typer.style("All checks PASSED!", fg=typer.colors.GREEN, bold=True))
        return
    typer.echo(typer.style("Some checks FAILED. Please review the output above.", fg=typer.colors.RED, bold=True))
    raise typer.Exit(1)
