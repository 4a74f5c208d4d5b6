"""
Child process adapters: one-shot commands for the toolchain, and the
long-running media server process.
"""
import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Optional

import psutil

from echoplayer.internal.logging import get_logger
from echoplayer.kernel.errors import CommandError, LaunchError

logger = get_logger(__name__)


# ---------------------------------------------------------------------
# One-shot commands
# ---------------------------------------------------------------------

@dataclass
class CommandResult:
    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def check(self) -> "CommandResult":
        if not self.ok:
            raise CommandError(self.args, self.returncode, self.stderr or self.stdout)
        return self


class CommandRunner:
    """
    Runs a command to completion and captures its output.
    """

    async def run(
        self,
        args: list[str],
        cwd: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        logger.debug("Running command", args=args, cwd=cwd)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.warning("Command could not be started", args=args, error=str(e))
            return CommandResult(list(args), 127, "", str(e))

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            logger.warning("Command timed out", args=args, timeout=timeout)
            return CommandResult(list(args), -1, "", "timed out")

        return CommandResult(
            list(args),
            process.returncode,
            stdout.decode(errors="replace"),
            stderr.decode(errors="replace"),
        )


# ---------------------------------------------------------------------
# Media server process
# ---------------------------------------------------------------------

class SidecarProcess:
    """
    A launched media server. Output lines are forwarded to the log.
    """

    def __init__(self, process: asyncio.subprocess.Process, name: str = "media-server"):
        self._process = process
        self.name = name
        self._log = logger.bind(process=name, pid=process.pid)
        self._pumps = [
            asyncio.ensure_future(self._pump(process.stdout, "stdout")),
            asyncio.ensure_future(self._pump(process.stderr, "stderr")),
        ]

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    async def _pump(self, stream: Optional[asyncio.StreamReader], channel: str) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # over the reader limit; the oversized chunk is already discarded
                self._log.warning("Sidecar output line too long, skipped", channel=channel)
                continue
            if not line:
                return
            text = line.decode(errors="replace").rstrip()
            if text:
                self._log.info("Sidecar output", channel=channel, line=text)

    async def wait(self) -> int:
        code = await self._process.wait()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        return code

    def terminate(self) -> None:
        if self._process.returncode is None:
            self._log.info("Sending SIGTERM")
            try:
                self._process.terminate()
            except ProcessLookupError:
                pass

    def kill(self) -> None:
        """
        Kill the process and everything it spawned (uv runs the server as a child).
        """
        if self._process.returncode is not None:
            return
        self._log.warning("Killing process tree")
        try:
            children = psutil.Process(self._process.pid).children(recursive=True)
        except psutil.NoSuchProcess:
            children = []
        for child in children:
            try:
                child.kill()
            except psutil.NoSuchProcess:
                pass
        try:
            self._process.kill()
        except ProcessLookupError:
            pass


async def launch_process(args: list[str], cwd: str, env: dict[str, str]) -> SidecarProcess:
    """
    Spawn the media server. Raises LaunchError when the process cannot start.
    """
    kwargs = {}
    if sys.platform != "win32":
        # own process group so terminal signals do not reach the server twice
        kwargs["start_new_session"] = True

    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            env=env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **kwargs,
        )
    except OSError as e:
        raise LaunchError(f"Failed to launch {args[0]}: {e}") from e

    logger.info("Sidecar process spawned", pid=process.pid, args=args, cwd=cwd)
    return SidecarProcess(process)


def inherited_env() -> dict[str, str]:
    return dict(os.environ)
