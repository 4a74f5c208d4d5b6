"""
Supervision of the media server sidecar.

Lifecycle: stopped -> starting -> running -> stopping -> stopped, with
starting/running -> error on failure. One supervising task per launched
process owns the crash decision; health checks only observe.
"""
import asyncio
import shutil
import time
from pathlib import Path
from typing import Awaitable, Callable, Optional

from echoplayer.adapters.http.client import MediaServerHealthProbe
from echoplayer.adapters.process import inherited_env, launch_process
from echoplayer.internal import paths
from echoplayer.internal.constants import (
    HEALTH_CHECK_INTERVAL,
    MAX_RESTART_ATTEMPTS,
    MEDIA_SERVER_APP,
    MEDIA_SERVER_HOST,
    MEDIA_SERVER_LOG_LEVEL,
    RESTART_BACKOFF_STEP,
    RESTART_SETTLE_DELAY,
    RESTART_STABLE_AFTER,
    SHUTDOWN_GRACE_PERIOD,
    SIDECAR_ENV_VARS,
    STARTUP_POLL_INTERVAL,
    STARTUP_TIMEOUT,
)
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.contracts import (
    HealthProbe,
    PortListener,
    ProcessLauncher,
    SidecarConfig,
    SidecarProcessHandle,
    SidecarState,
    SidecarStatus,
    Tool,
)
from echoplayer.kernel.errors import (
    CrashLoopError,
    LaunchError,
    PreconditionError,
    SidecarError,
    StartupTimeoutError,
)
from echoplayer.runtime.acquisition import BinaryAcquisitionManager
from echoplayer.runtime.bootstrap import EnvironmentBootstrap
from echoplayer.runtime.ports import PortAllocator

logger = get_logger(__name__)


# ---------------------------------------------------------------------
# Launch helpers
# ---------------------------------------------------------------------

def build_env(config: SidecarConfig, base: Optional[dict[str, str]] = None) -> dict[str, str]:
    """
    Inherited environment plus one variable per defined config field.
    Booleans are rendered as `true` / `false`.
    """
    env = dict(base if base is not None else inherited_env())
    env["PYTHONUNBUFFERED"] = "1"
    for field, var in SIDECAR_ENV_VARS.items():
        value = getattr(config, field)
        if value is None:
            continue
        if isinstance(value, bool):
            env[var] = "true" if value else "false"
        else:
            env[var] = str(value)
    return env


def build_command(toolchain: str, config: SidecarConfig) -> list[str]:
    return [
        toolchain, "run", "python", "-m", "uvicorn", MEDIA_SERVER_APP,
        "--host", config.host or MEDIA_SERVER_HOST,
        "--port", str(config.port),
        "--log-level", config.log_level or MEDIA_SERVER_LOG_LEVEL,
    ]


# ---------------------------------------------------------------------
# Supervisor
# ---------------------------------------------------------------------

class MediaServerSupervisor:
    def __init__(
        self,
        bootstrap: EnvironmentBootstrap,
        binaries: Optional[BinaryAcquisitionManager] = None,
        launcher: ProcessLauncher = launch_process,
        health: Optional[HealthProbe] = None,
        ports: Optional[PortAllocator] = None,
        cache_root: Optional[Path] = None,
        base_env: Optional[dict[str, str]] = None,
        startup_timeout: float = STARTUP_TIMEOUT,
        poll_interval: float = STARTUP_POLL_INTERVAL,
        health_interval: float = HEALTH_CHECK_INTERVAL,
        grace_period: float = SHUTDOWN_GRACE_PERIOD,
        max_restarts: int = MAX_RESTART_ATTEMPTS,
        backoff_step: float = RESTART_BACKOFF_STEP,
        settle_delay: float = RESTART_SETTLE_DELAY,
        stable_after: float = RESTART_STABLE_AFTER,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.bootstrap = bootstrap
        self.binaries = binaries
        self._launcher = launcher
        self.health = health or MediaServerHealthProbe()
        self.ports = ports or PortAllocator()
        self._cache_root = cache_root
        self._base_env = base_env
        self.startup_timeout = startup_timeout
        self.poll_interval = poll_interval
        self.health_interval = health_interval
        self.grace_period = grace_period
        self.max_restarts = max_restarts
        self.backoff_step = backoff_step
        self.settle_delay = settle_delay
        self.stable_after = stable_after
        self._sleep = sleep
        self._which = which

        self.state = SidecarState()
        self.health_failures = 0
        self._config: Optional[SidecarConfig] = None
        self._process: Optional[SidecarProcessHandle] = None
        self._exit_task: Optional[asyncio.Future] = None
        self._supervise_task: Optional[asyncio.Task] = None
        self._health_task: Optional[asyncio.Task] = None
        self._stop_task: Optional[asyncio.Task] = None
        self._stop_requested = False
        # bumped by every stop so an in-flight launch can tell it was superseded
        self._generation = 0
        self._listeners: list[PortListener] = []

    # ------------------------------------------------------------------
    # Queries and listeners
    # ------------------------------------------------------------------

    @property
    def status(self) -> SidecarStatus:
        return self.state.status

    def get_port(self) -> Optional[int]:
        return self.state.port

    def get_info(self) -> dict:
        info = self.state.to_dict()
        info["config"] = self._config.model_dump(exclude_none=True) if self._config else None
        info["health_failures"] = self.health_failures
        return info

    def add_port_listener(self, listener: PortListener) -> None:
        self._listeners.append(listener)

    def remove_port_listener(self, listener: PortListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, port: Optional[int]) -> None:
        for listener in list(self._listeners):
            try:
                listener(port)
            except Exception:
                logger.exception("Port listener raised")

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def _resolve_tool(self, tool: Tool) -> Optional[str]:
        if self.binaries is not None and tool in self.binaries.tools:
            installed = self.binaries.installed_path(tool)
            if installed is not None:
                return str(installed)
        return self._which(tool.value)

    def resolve_config(self, config: Optional[SidecarConfig] = None) -> SidecarConfig:
        """
        Caller config layered over defaults, with toolchain paths filled in.
        """
        cache_root = self._cache_root or paths.get_media_server_cache_dir()
        defaults = SidecarConfig(
            host=MEDIA_SERVER_HOST,
            log_level=MEDIA_SERVER_LOG_LEVEL,
            debug=False,
            sessions_root=str(cache_root / "sessions"),
            hls_segment_cache_root=str(cache_root / "hls-segments"),
            audio_cache_root=str(cache_root / "audio-cache"),
        )
        overrides = config.model_dump(exclude_none=True) if config else {}
        merged = defaults.model_copy(update=overrides)

        if not merged.ffmpeg_path:
            merged.ffmpeg_path = self._resolve_tool(Tool.FFMPEG)
        if not merged.ffprobe_path:
            merged.ffprobe_path = self._resolve_tool(Tool.FFPROBE)

        for root in (merged.sessions_root, merged.hls_segment_cache_root, merged.audio_cache_root):
            Path(root).mkdir(parents=True, exist_ok=True)
        return merged

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    async def start(self, config: Optional[SidecarConfig] = None) -> bool:
        if self.state.status in (SidecarStatus.STARTING, SidecarStatus.RUNNING, SidecarStatus.STOPPING):
            logger.warning("Start rejected", status=self.state.status.value)
            return False

        self._cancel_supervision()
        self._stop_requested = False
        self.state.restart_attempts = 0
        self.state.last_error = None
        self.state.error_code = None
        self._config = self.resolve_config(config)
        return await self._launch()

    async def _launch(self, from_supervisor: bool = False) -> bool:
        generation = self._generation
        self.state.status = SidecarStatus.STARTING
        self.state.last_error = None
        self.state.error_code = None

        try:
            if not await self.bootstrap.is_ready():
                raise PreconditionError("Toolchain installer or virtual environment missing")
            toolchain = await self.bootstrap.get_toolchain_path()
            if toolchain is None:
                raise PreconditionError("Toolchain installer missing")

            port = self.ports.allocate(self._config.port, self._config.host)
            launch_config = self._config.model_copy(update={"port": port})
            args = build_command(str(toolchain), launch_config)
            env = build_env(launch_config, self._base_env)

            logger.info("Starting media server", host=launch_config.host, port=port)
            process = await self._launcher(args, str(self.bootstrap.project_dir), env)
        except SidecarError as e:
            if generation == self._generation:
                self._record_failure(e, from_supervisor)
            return False

        exit_task = asyncio.ensure_future(process.wait())
        if generation != self._generation:
            # stopped while the process was being spawned
            await self._kill(process, exit_task)
            return False

        self._process = process
        self._exit_task = exit_task
        self.state.pid = process.pid

        try:
            await self._wait_until_ready(exit_task, launch_config.host, port)
        except SidecarError as e:
            if generation == self._generation:
                await self._kill(process, exit_task)
                self._process = None
                self._exit_task = None
                self.state.pid = None
                self._record_failure(e, from_supervisor)
            return False

        if generation != self._generation:
            return False

        self.state.status = SidecarStatus.RUNNING
        self.state.port = port
        self.state.start_time = time.time()
        if not from_supervisor:
            self.state.restart_attempts = 0
        self.health_failures = 0

        self._health_task = asyncio.ensure_future(self._health_loop(launch_config.host, port))
        self._supervise_task = asyncio.ensure_future(self._supervise(process, exit_task))

        logger.info("Media server running", pid=process.pid, port=port)
        self._notify(port)
        return True

    async def _wait_until_ready(self, exit_task: asyncio.Future, host: str, port: int) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.startup_timeout
        while True:
            if exit_task.done():
                raise LaunchError(f"Media server exited during startup with code {exit_task.result()}")
            if await self.health.check(host, port):
                return
            if loop.time() >= deadline:
                raise StartupTimeoutError(f"Media server not reachable within {self.startup_timeout}s")
            await asyncio.sleep(self.poll_interval)

    def _record_failure(self, error: SidecarError, from_supervisor: bool) -> None:
        # relaunch failures leave the state stopped so supervision can retry
        self.state.status = SidecarStatus.STOPPED if from_supervisor else SidecarStatus.ERROR
        self.state.port = None
        self.state.pid = None
        self.state.start_time = None
        self.state.last_error = str(error)
        self.state.error_code = error.code
        logger.error("Media server failed to start", error_code=error.code, error=str(error))

    # ------------------------------------------------------------------
    # Supervision
    # ------------------------------------------------------------------

    async def _supervise(self, process: SidecarProcessHandle, exit_task: asyncio.Future) -> None:
        code = await asyncio.shield(exit_task)
        if self._stop_requested or process is not self._process:
            return

        started = self.state.start_time
        if started is not None and time.time() - started >= self.stable_after:
            self.state.restart_attempts = 0

        self._stop_health_loop()
        self._process = None
        self._exit_task = None
        self.state.status = SidecarStatus.STOPPED
        self.state.pid = None
        self.state.port = None
        self.state.start_time = None
        self._notify(None)

        if code == 0:
            self.state.restart_attempts = 0
            logger.info("Media server exited cleanly")
            return

        logger.warning("Media server exited unexpectedly", code=code)
        while True:
            if self.state.restart_attempts >= self.max_restarts:
                error = CrashLoopError(f"Media server exited {self.max_restarts} times in a row")
                self.state.status = SidecarStatus.ERROR
                self.state.last_error = str(error)
                self.state.error_code = error.code
                logger.error("Restart limit reached", attempts=self.state.restart_attempts)
                return

            self.state.restart_attempts += 1
            delay = self.backoff_step * self.state.restart_attempts
            logger.info("Restarting media server", attempt=self.state.restart_attempts, delay=delay)
            await self._sleep(delay)

            if self._stop_requested or self.state.status != SidecarStatus.STOPPED:
                return
            if await self._launch(from_supervisor=True):
                return
            if self._stop_requested or self.state.status != SidecarStatus.STOPPED:
                return

    async def _health_loop(self, host: str, port: int) -> None:
        while True:
            await asyncio.sleep(self.health_interval)
            if await self.health.check(host, port):
                self.health_failures = 0
                continue
            self.health_failures += 1
            logger.warning("Media server health check failed", port=port, consecutive=self.health_failures)

    def _stop_health_loop(self) -> None:
        if self._health_task is not None:
            self._health_task.cancel()
            self._health_task = None

    def _cancel_supervision(self) -> None:
        task = self._supervise_task
        self._supervise_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    # ------------------------------------------------------------------
    # Stop / restart
    # ------------------------------------------------------------------

    async def _kill(self, process: SidecarProcessHandle, exit_task: asyncio.Future) -> None:
        process.kill()
        try:
            await asyncio.wait_for(asyncio.shield(exit_task), timeout=self.grace_period)
        except asyncio.TimeoutError:
            logger.error("Process did not exit after kill", pid=process.pid)

    async def stop(self) -> bool:
        if self.state.status == SidecarStatus.STOPPING and self._stop_task is not None:
            return await asyncio.shield(self._stop_task)

        if self.state.status in (SidecarStatus.STOPPED, SidecarStatus.ERROR) and self._process is None:
            self._cancel_supervision()
            if self.state.status == SidecarStatus.ERROR:
                self.state.status = SidecarStatus.STOPPED
            return True

        # claim STOPPING before yielding so concurrent callers join this stop
        self._generation += 1
        self._stop_requested = True
        self.state.status = SidecarStatus.STOPPING
        self._stop_health_loop()

        self._stop_task = asyncio.ensure_future(self._stop())
        try:
            return await asyncio.shield(self._stop_task)
        finally:
            self._stop_task = None

    async def _stop(self) -> bool:
        process, exit_task = self._process, self._exit_task
        if process is not None:
            process.terminate()
            try:
                await asyncio.wait_for(asyncio.shield(exit_task), timeout=self.grace_period)
            except asyncio.TimeoutError:
                logger.warning("Media server ignored SIGTERM, killing", pid=process.pid)
                process.kill()
                await exit_task

        self._cancel_supervision()
        self._process = None
        self._exit_task = None
        self.state.status = SidecarStatus.STOPPED
        self.state.pid = None
        self.state.port = None
        self.state.start_time = None
        self._stop_requested = False
        logger.info("Media server stopped")
        self._notify(None)
        return True

    async def restart(self, config: Optional[SidecarConfig] = None) -> bool:
        await self.stop()
        await asyncio.sleep(self.settle_delay)
        if config is None and self._config is not None:
            config = self._config
        return await self.start(config)

    async def shutdown(self) -> None:
        await self.stop()
        self._listeners.clear()
