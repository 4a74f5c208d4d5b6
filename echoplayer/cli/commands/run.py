import asyncio
from typing import Optional

import typer
from rich.console import Console

from echoplayer.cli import core
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.contracts import SidecarConfig, SidecarStatus

console = Console()
logger = get_logger(__name__)


def run(
    port: Optional[int] = typer.Option(None, help="Preferred port for the media server."),
    log_level: str = typer.Option("info", help="Media server log level."),
    debug: bool = typer.Option(False, help="Run the media server in debug mode."),
):
    """
    Run the media server in the foreground and supervise it until Ctrl-C.
    """
    services = core.get_services()
    config = SidecarConfig(port=port, log_level=log_level, debug=debug)

    async def supervise() -> bool:
        supervisor = services.supervisor
        supervisor.add_port_listener(
            lambda p: console.print(f"Media server port: [cyan]{p}[/cyan]" if p else "[yellow]Media server stopped[/yellow]")
        )
        if not await supervisor.start(config):
            info = supervisor.get_info()
            console.print(f"[red]Media server failed to start: {info['error_code']}[/red]")
            return False
        try:
            while True:
                await asyncio.sleep(1.0)
                state = supervisor.state
                if state.status == SidecarStatus.ERROR:
                    console.print(f"[red]Media server gave up: {state.error_code}[/red]")
                    return False
                # clean exit, nothing scheduled
                if state.status == SidecarStatus.STOPPED and state.restart_attempts == 0:
                    return True
        finally:
            await services.shutdown()

    try:
        ok = core.run_async(supervise())
    except KeyboardInterrupt:
        console.print("Media server stopped.")
        return

    if not ok:
        raise typer.Exit(1)
