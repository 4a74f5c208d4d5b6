"""
In-memory stand-ins for processes, the bootstrap and the network adapters.
"""
import asyncio
from pathlib import Path
from typing import Optional

from echoplayer.adapters.process import CommandResult
from echoplayer.kernel.contracts import (
    AcquisitionResult,
    Arch,
    DownloadProgress,
    DownloadStatus,
    Platform,
    PyPIMirror,
)
from echoplayer.kernel.errors import ExtractionError, NetworkError


# ---------------------------------------------------------------------
# Sidecar
# ---------------------------------------------------------------------

class FakeProcess:
    """
    A child process that exits when told to, or on terminate/kill.
    """

    def __init__(self, pid: int = 4242, ignore_terminate: bool = False):
        self.pid = pid
        self.returncode: Optional[int] = None
        self.ignore_terminate = ignore_terminate
        self.calls: list[str] = []
        self._exited = asyncio.Event()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def exit(self, code: int) -> None:
        if self.returncode is None:
            self.returncode = code
        self._exited.set()

    def terminate(self) -> None:
        self.calls.append("terminate")
        if not self.ignore_terminate:
            self.exit(-15)

    def kill(self) -> None:
        self.calls.append("kill")
        self.exit(-9)


class FakeLauncher:
    def __init__(self, processes: Optional[list[FakeProcess]] = None):
        self.processes = list(processes or [])
        self.calls: list[tuple[list[str], str, dict]] = []
        self.launched: list[FakeProcess] = []

    async def __call__(self, args, cwd, env):
        self.calls.append((args, cwd, env))
        process = self.processes.pop(0) if self.processes else FakeProcess(pid=1000 + len(self.calls))
        self.launched.append(process)
        return process


class FakeBootstrap:
    def __init__(self, project_dir: Path, ready: bool = True, toolchain: Optional[str] = "/opt/uv/uv"):
        self.project_dir = project_dir
        self.ready = ready
        self.toolchain = toolchain

    async def is_ready(self) -> bool:
        return self.ready

    async def get_toolchain_path(self) -> Optional[Path]:
        return Path(self.toolchain) if self.toolchain else None


class FakeHealth:
    """
    Answers from a script first, then with `default`.
    """

    def __init__(self, results: Optional[list[bool]] = None, default: bool = True):
        self.results = list(results or [])
        self.default = default
        self.calls = 0

    async def check(self, host: str, port: int) -> bool:
        self.calls += 1
        if self.results:
            return self.results.pop(0)
        return self.default


class RecordingSleep:
    """
    Records requested delays. Blocks until released when `gate` is set.
    """

    def __init__(self, block: bool = False):
        self.delays: list[float] = []
        self.gate = asyncio.Event() if block else None

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.gate is not None:
            await self.gate.wait()


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


# ---------------------------------------------------------------------
# Acquisition
# ---------------------------------------------------------------------

class FakeDownloader:
    """
    Writes `payload` to the destination unless the URL is listed in `failing`.
    """

    def __init__(self, payload: bytes = b"archive", failing: Optional[set[str]] = None):
        self.payload = payload
        self.failing = failing or set()
        self.errors: dict[str, Exception] = {}
        self.urls: list[str] = []
        self.user_agents: list[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def download(self, url, destination, *, user_agent, expected_size=0, token=None, on_progress=None):
        self.urls.append(url)
        self.user_agents.append(user_agent)
        if self.gate is not None:
            await self.gate.wait()
        if token is not None:
            token.raise_if_cancelled()
        if url in self.errors:
            raise self.errors[url]
        if url in self.failing:
            raise NetworkError(f"unreachable: {url}")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(self.payload)
        if on_progress:
            on_progress(DownloadProgress(percent=100.0, downloaded=len(self.payload), total=len(self.payload)))
        return len(self.payload)


class FakeExtractor:
    """
    "Extracts" by laying out the given relative files under the destination.
    """

    def __init__(self, files: Optional[list[str]] = None, fail: bool = False):
        self.files = files or []
        self.fail = fail
        self.archives: list[Path] = []

    async def extract(self, archive: Path, destination: Path) -> None:
        self.archives.append(archive)
        if self.fail:
            raise ExtractionError("corrupt archive")
        destination.mkdir(parents=True, exist_ok=True)
        for relative in self.files:
            target = destination / relative
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(b"#!/bin/sh\n")


class StaticRegion:
    """
    A RegionLookup replacement with a fixed answer.
    """

    def __init__(self, country: str = "US", failed: bool = False, delay: float = 0.0):
        self.country = country
        self.failed = failed
        self.delay = delay
        self.calls = 0

    @property
    def lookup_failed(self) -> bool:
        return self.failed

    async def get_country(self, force_refresh: bool = False) -> str:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.country


# ---------------------------------------------------------------------
# Bootstrap
# ---------------------------------------------------------------------

class FakeRunner:
    """
    Scripted CommandRunner. `responses` maps a subcommand to (returncode, stdout).
    """

    def __init__(self, responses: Optional[dict[str, tuple[int, str]]] = None, venv_dir: Optional[Path] = None):
        self.responses = responses or {}
        self.calls: list[list[str]] = []
        self.venv_dir = venv_dir

    def _subcommand(self, args: list[str]) -> str:
        if args[1:2] == ["--version"]:
            return "--version"
        return args[1] if len(args) > 1 else ""

    async def run(self, args, cwd=None, env=None, timeout=None) -> CommandResult:
        self.calls.append(list(args))
        sub = self._subcommand(args)
        response = self.responses.get(sub, (0, ""))
        # a list scripts successive calls
        if isinstance(response, list):
            response = response.pop(0) if len(response) > 1 else response[0]
        returncode, stdout = response
        if sub == "venv" and returncode == 0 and self.venv_dir is not None:
            python = self.venv_dir / "bin" / "python"
            python.parent.mkdir(parents=True, exist_ok=True)
            python.write_text("")
        return CommandResult(list(args), returncode, stdout, "")


class FakeToolchain:
    """
    Stands in for the uv acquisition manager.
    """

    def __init__(self, installed: Optional[Path] = None, acquire_ok: bool = True):
        self.installed = installed
        self.acquire_ok = acquire_ok
        self.acquired = 0

    def installed_path(self, tool, platform=None, arch=None) -> Optional[Path]:
        return self.installed

    async def acquire(self, tool, platform=None, arch=None, on_progress=None):
        self.acquired += 1
        if self.acquire_ok:
            self.installed = Path("/downloaded/uv")
            return AcquisitionResult(True, DownloadStatus.COMPLETED, tool, Platform.current(), Arch.current(), path=str(self.installed))
        return AcquisitionResult(False, DownloadStatus.ERROR, tool, Platform.current(), Arch.current(), error_code="network_failure")


class FixedPyPI:
    def __init__(self, name: str = "official", url: str = "https://pypi.org/simple/"):
        self.mirror = PyPIMirror(name=name, url=url, test_url=url, location="Test")

    async def select_fastest(self):
        return self.mirror

