"""
Environment bootstrap for the media server: toolchain installer, virtual
environment, then locked dependency sync. Each step is idempotent.
"""
import re
import shutil
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from echoplayer.adapters.process import CommandRunner
from echoplayer.internal.constants import (
    LOCK_FILE,
    PROJECT_CONFIG_FILE,
    TOOLCHAIN_CACHE_TTL,
    VENV_DIR_NAME,
)
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.contracts import (
    AcquisitionResult,
    Arch,
    BootstrapStage,
    DownloadStatus,
    InstallProgress,
    InstallProgressCallback,
    Platform,
    ProgressCallback,
    ToolchainInfo,
    Tool,
    VenvInfo,
)
from echoplayer.kernel.errors import BootstrapError
from echoplayer.runtime.acquisition import BinaryAcquisitionManager
from echoplayer.runtime.mirror import OFFICIAL_PYPI, PyPIMirrorSelector

logger = get_logger(__name__)

UV_VERSION_RE = re.compile(r"uv (\S+)")
PYTHON_VERSION_RE = re.compile(r"Python (\S+)")


class EnvironmentBootstrap:
    def __init__(
        self,
        toolchain: BinaryAcquisitionManager,
        project_dir: Path,
        runner: Optional[CommandRunner] = None,
        pypi: Optional[PyPIMirrorSelector] = None,
        which: Callable[[str], Optional[str]] = shutil.which,
        clock: Callable[[], float] = time.monotonic,
        windows: bool = sys.platform == "win32",
    ):
        self.toolchain = toolchain
        self.project_dir = Path(project_dir)
        self.runner = runner or CommandRunner()
        self.pypi = pypi or PyPIMirrorSelector()
        self._which = which
        self._clock = clock
        self._windows = windows
        self._toolchain_cache: Optional[tuple[float, ToolchainInfo]] = None

    # ------------------------------------------------------------------
    # Toolchain installer
    # ------------------------------------------------------------------

    async def _toolchain_version(self, executable: str) -> Optional[str]:
        result = await self.runner.run([executable, "--version"], timeout=10)
        if not result.ok:
            return None
        match = UV_VERSION_RE.search(result.stdout)
        return match.group(1) if match else None

    async def check_toolchain(self, use_cache: bool = True) -> ToolchainInfo:
        """
        Downloaded copy first, then the one on PATH. Cached for a short TTL.
        """
        if use_cache and self._toolchain_cache is not None:
            cached_at, info = self._toolchain_cache
            if self._clock() - cached_at < TOOLCHAIN_CACHE_TTL:
                return info

        info = ToolchainInfo(exists=False)

        downloaded = self.toolchain.installed_path(Tool.UV)
        if downloaded is not None:
            version = await self._toolchain_version(str(downloaded))
            info = ToolchainInfo(exists=True, path=str(downloaded), version=version, is_downloaded=True)
        else:
            system = self._which("uv")
            if system:
                version = await self._toolchain_version(system)
                if version is not None:
                    info = ToolchainInfo(exists=True, path=system, version=version, is_system=True)

        logger.debug("Toolchain checked", exists=info.exists, path=info.path, version=info.version)
        self._toolchain_cache = (self._clock(), info)
        return info

    def clear_toolchain_cache(self) -> None:
        self._toolchain_cache = None

    async def get_toolchain_path(self) -> Optional[Path]:
        info = await self.check_toolchain()
        return Path(info.path) if info.exists and info.path else None

    async def ensure_toolchain(self, on_progress: Optional[ProgressCallback] = None) -> AcquisitionResult:
        info = await self.check_toolchain()
        if info.exists:
            return AcquisitionResult(
                True, DownloadStatus.COMPLETED, Tool.UV, Platform.current(), Arch.current(), path=info.path
            )

        logger.info("Toolchain installer missing, downloading")
        result = await self.toolchain.acquire(Tool.UV, on_progress=on_progress)
        self.clear_toolchain_cache()
        return result

    async def _require_toolchain(self) -> str:
        path = await self.get_toolchain_path()
        if path is None:
            raise BootstrapError("Toolchain installer is not available", code="toolchain_missing")
        return str(path)

    # ------------------------------------------------------------------
    # Virtual environment
    # ------------------------------------------------------------------

    @property
    def venv_path(self) -> Path:
        return self.project_dir / VENV_DIR_NAME

    @property
    def python_path(self) -> Path:
        if self._windows:
            return self.venv_path / "Scripts" / "python.exe"
        return self.venv_path / "bin" / "python"

    def venv_exists(self) -> bool:
        return self.venv_path.is_dir() and self.python_path.exists()

    async def check_venv(self) -> VenvInfo:
        info = VenvInfo(
            exists=self.venv_exists(),
            venv_path=str(self.venv_path),
            has_project_config=(self.project_dir / PROJECT_CONFIG_FILE).exists(),
            has_lockfile=(self.project_dir / LOCK_FILE).exists(),
        )
        if not info.exists:
            return info

        info.python_path = str(self.python_path)
        uv = await self.get_toolchain_path()
        if uv is not None:
            result = await self.runner.run(
                [str(uv), "run", "python", "--version"], cwd=str(self.project_dir), timeout=30
            )
            match = PYTHON_VERSION_RE.search(result.stdout + result.stderr) if result.ok else None
            info.python_version = match.group(1) if match else None
        return info

    async def create_venv(self, python_version: Optional[str] = None, force: bool = False) -> bool:
        if self.venv_exists() and not force:
            logger.info("Virtual environment already exists", path=str(self.venv_path))
            return True
        if force:
            self.remove_venv()

        uv = await self._require_toolchain()
        args = [uv, "venv"]
        if python_version:
            args += ["--python", python_version]

        result = await self.runner.run(args, cwd=str(self.project_dir))
        if not result.ok:
            logger.error("Virtual environment creation failed", returncode=result.returncode, stderr=result.stderr[-2000:])
            return False
        logger.info("Virtual environment created", path=str(self.venv_path))
        return True

    def remove_venv(self) -> bool:
        if not self.venv_path.exists():
            return False
        shutil.rmtree(self.venv_path)
        logger.info("Virtual environment removed", path=str(self.venv_path))
        return True

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    async def install_dependencies(self, index_url: Optional[str] = None) -> bool:
        if not (self.project_dir / PROJECT_CONFIG_FILE).exists():
            logger.error("Project configuration missing", path=str(self.project_dir / PROJECT_CONFIG_FILE))
            return False

        uv = await self._require_toolchain()
        args = [uv, "sync"]
        if (self.project_dir / LOCK_FILE).exists():
            args.append("--frozen")
        if index_url:
            args += ["--index-url", index_url]

        result = await self.runner.run(args, cwd=str(self.project_dir))
        if not result.ok:
            logger.error("Dependency sync failed", returncode=result.returncode, stderr=result.stderr[-2000:])
            return False
        logger.info("Dependencies synced", index_url=index_url)
        return True

    async def install_dependencies_with_best_mirror(self) -> bool:
        mirror = await self.pypi.select_fastest()
        if await self.install_dependencies(mirror.url):
            return True
        if mirror.name == OFFICIAL_PYPI.name:
            return False
        logger.warning("Dependency sync failed on mirror, retrying official index", mirror=mirror.name)
        return await self.install_dependencies(OFFICIAL_PYPI.url)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def initialize(
        self,
        on_progress: Optional[InstallProgressCallback] = None,
        python_version: Optional[str] = None,
    ) -> bool:
        def report(stage: BootstrapStage, message: str, percent: int, error: Optional[str] = None) -> None:
            logger.info("Bootstrap progress", stage=stage.value, message=message, percent=percent)
            if on_progress:
                on_progress(InstallProgress(stage, message, percent, error))

        report(BootstrapStage.INIT, "bootstrap.init", 0)
        try:
            report(BootstrapStage.TOOLCHAIN, "bootstrap.toolchain", 10)
            acquired = await self.ensure_toolchain()
            if not acquired:
                raise BootstrapError("Toolchain installer download failed", code=acquired.error_code or "toolchain_missing")

            report(BootstrapStage.VENV, "bootstrap.venv", 30)
            if not await self.create_venv(python_version):
                raise BootstrapError("Virtual environment creation failed", code="venv_failed")

            report(BootstrapStage.DEPS, "bootstrap.deps", 60)
            if not await self.install_dependencies_with_best_mirror():
                raise BootstrapError("Dependency sync failed", code="deps_failed")

        except BootstrapError as e:
            report(BootstrapStage.ERROR, "bootstrap.error", 0, error=e.code)
            return False

        report(BootstrapStage.COMPLETED, "bootstrap.completed", 100)
        return True

    async def reinstall_dependencies(self, on_progress: Optional[InstallProgressCallback] = None) -> bool:
        self.remove_venv()
        return await self.initialize(on_progress)

    async def is_ready(self) -> bool:
        """
        Preconditions for launching the media server.
        """
        info = await self.check_toolchain()
        return info.exists and self.venv_exists()
