import typer

from echoplayer.cli.commands import (
    binaries,
    bootstrap,
    doctor,
    install,
    restart,
    run,
    serve,
    start,
    status,
    stop,
    uninstall,
    version,
)
from echoplayer.internal.logging import setup_default_logging

app = typer.Typer(
    name="echoplayer",
    help="Media toolchain and media server manager for EchoPlayer.",
    no_args_is_help=True,
)


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Echo logs to the console.")):
    setup_default_logging(console_output=verbose)


app.command("binaries")(binaries.binaries)
app.command("install")(install.install)
app.command("uninstall")(uninstall.uninstall)
app.command("bootstrap")(bootstrap.bootstrap)
app.command("run")(run.run)
app.command("serve")(serve.serve)
app.command("start")(start.start)
app.command("stop")(stop.stop)
app.command("restart")(restart.restart)
app.command("status")(status.status)
app.command("doctor")(doctor.doctor)
app.command("version")(version.version)

if __name__ == "__main__":
    app()
