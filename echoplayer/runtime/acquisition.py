"""
Binary acquisition: resolve, download, verify, extract and install a
platform-specific executable, exactly once per (tool, platform, arch).
"""
import shutil
from pathlib import Path
from typing import Iterable, Optional, Union

from echoplayer.adapters.archive import SubprocessArchiveExtractor
from echoplayer.adapters.http.downloader import HttpDownloader
from echoplayer.adapters.storage_fs import FileSystemArtifactStore, verify_sha256
from echoplayer.internal.constants import USER_AGENT_TEMPLATE
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.artifacts import ArchiveExtractor, InstalledArtifact
from echoplayer.kernel.contracts import (
    AcquisitionResult,
    Arch,
    ArtifactDescriptor,
    DownloadProgress,
    DownloadStatus,
    DownloadTask,
    Platform,
    ProgressCallback,
    Tool,
)
from echoplayer.kernel.errors import (
    AcquisitionError,
    ConcurrentOperationError,
    DownloadCancelledError,
    UnsupportedPlatformError,
)
from echoplayer.runtime.mirror import MirrorSelector

logger = get_logger(__name__)

TaskKey = tuple[Tool, Platform, Arch]

_AGENT_NAMES = {
    Tool.FFMPEG: "FFmpeg",
    Tool.FFPROBE: "FFprobe",
    Tool.UV: "Uv",
}

EXTRACTING_PERCENT = 90.0


def user_agent_for(tool: Tool) -> str:
    return USER_AGENT_TEMPLATE.format(tool=_AGENT_NAMES.get(tool, tool.value))


class BinaryAcquisitionManager:
    """
    Owns the download tasks for a fixed set of tools.

    At most one task exists per key; it is registered before the first
    suspension point so a concurrent request for the same key always sees it.
    A region-mirror failure is retried once against the default mirror.
    """

    def __init__(
        self,
        tools: Iterable[Union[Tool, str]],
        selector: MirrorSelector,
        downloader: Optional[HttpDownloader] = None,
        extractor: Optional[ArchiveExtractor] = None,
        store: Optional[FileSystemArtifactStore] = None,
    ):
        self.tools = frozenset(Tool(t) for t in tools)
        self.selector = selector
        self.catalog = selector.catalog
        self.downloader = downloader or HttpDownloader()
        self.extractor = extractor or SubprocessArchiveExtractor()
        self.store = store or FileSystemArtifactStore()
        self._tasks: dict[TaskKey, DownloadTask] = {}

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _key(
        self,
        tool: Union[Tool, str],
        platform: Union[Platform, str, None],
        arch: Union[Arch, str, None],
    ) -> TaskKey:
        tool = Tool(tool)
        if tool not in self.tools:
            raise ValueError(f"{tool.value} is not managed here")
        return (
            tool,
            Platform(platform) if platform else Platform.current(),
            Arch(arch) if arch else Arch.current(),
        )

    def _descriptors(self, key: TaskKey) -> list[ArtifactDescriptor]:
        return self.catalog.descriptors(*key)

    async def resolve_version(self, tool, platform=None, arch=None) -> Optional[ArtifactDescriptor]:
        """
        The descriptor the next acquisition would use, or None when unsupported.
        """
        return await self.selector.choose(*self._key(tool, platform, arch))

    def get_executable_path(self, tool, platform=None, arch=None) -> Path:
        """
        Where the executable lives once installed. Pure path computation.
        """
        key = self._key(tool, platform, arch)
        descriptors = self._descriptors(key)
        if not descriptors:
            raise UnsupportedPlatformError(f"No {key[0].value} build for {key[1].value}-{key[2].value}")

        for descriptor in descriptors:
            if self.store.is_installed(descriptor):
                return self.store.executable_path(descriptor)
        return self.store.executable_path(descriptors[-1])

    def is_installed(self, tool, platform=None, arch=None) -> bool:
        key = self._key(tool, platform, arch)
        return any(self.store.is_installed(d) for d in self._descriptors(key))

    def installed_path(self, tool, platform=None, arch=None) -> Optional[Path]:
        if not self.is_installed(tool, platform, arch):
            return None
        return self.get_executable_path(tool, platform, arch)

    def installed_artifacts(self) -> list[InstalledArtifact]:
        found = []
        for tool in sorted(self.tools, key=lambda t: t.value):
            found.extend(self.store.list_installed(tool))
        return found

    def list_supported(self, tool=None) -> list[ArtifactDescriptor]:
        tools = [Tool(tool)] if tool else sorted(self.tools, key=lambda t: t.value)
        supported = []
        for t in tools:
            supported.extend(self.catalog.supported(t))
        return supported

    def get_progress(self, tool, platform=None, arch=None) -> Optional[DownloadProgress]:
        task = self._tasks.get(self._key(tool, platform, arch))
        return task.progress if task else None

    def is_busy(self, tool, platform=None, arch=None) -> bool:
        return self._key(tool, platform, arch) in self._tasks

    # ------------------------------------------------------------------
    # Acquisition
    # ------------------------------------------------------------------

    async def acquire(
        self,
        tool,
        platform=None,
        arch=None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AcquisitionResult:
        key = self._key(tool, platform, arch)
        tool_, platform_, arch_ = key

        def result(ok: bool, status: DownloadStatus, **kwargs) -> AcquisitionResult:
            return AcquisitionResult(ok, status, tool_, platform_, arch_, **kwargs)

        descriptors = self._descriptors(key)
        if not descriptors:
            error = UnsupportedPlatformError()
            logger.error("Unsupported platform", tool=tool_.value, platform=platform_.value, arch=arch_.value)
            return result(False, DownloadStatus.ERROR, error_code=error.code)

        if self.is_installed(*key):
            path = self.get_executable_path(*key)
            logger.info("Already installed, skipping download", tool=tool_.value, path=str(path))
            return result(True, DownloadStatus.COMPLETED, path=str(path))

        if key in self._tasks:
            logger.warning("Acquisition already in progress", tool=tool_.value, platform=platform_.value, arch=arch_.value)
            return result(False, DownloadStatus.ERROR, error_code=ConcurrentOperationError.code)

        # Registered before the first await
        task = DownloadTask(descriptor=descriptors[-1])
        self._tasks[key] = task

        try:
            chosen = await self.selector.choose(*key) or descriptors[-1]
            task.descriptor = chosen
            try:
                path = await self._run(task, chosen, on_progress)
            except DownloadCancelledError:
                raise
            except Exception as e:
                fallback = self.selector.fallback_for(chosen)
                if fallback is None or task.token.cancelled:
                    raise
                logger.warning(
                    "Region mirror failed, retrying default mirror",
                    tool=tool_.value,
                    error=str(e),
                    url=fallback.url,
                )
                chosen = fallback
                task.descriptor = fallback
                task.progress = DownloadProgress()
                path = await self._run(task, fallback, on_progress)

            return result(True, DownloadStatus.COMPLETED, path=str(path), mirror=chosen.mirror)

        except DownloadCancelledError as e:
            task.progress.status = DownloadStatus.CANCELLED
            self._emit(task, on_progress)
            logger.info("Acquisition cancelled", tool=tool_.value)
            return result(False, DownloadStatus.CANCELLED, error_code=e.code, mirror=task.descriptor.mirror)

        except AcquisitionError as e:
            task.progress.status = DownloadStatus.ERROR
            self._emit(task, on_progress)
            logger.error("Acquisition failed", tool=tool_.value, error_code=e.code, error=str(e))
            return result(
                False,
                DownloadStatus.ERROR,
                error_code=e.code,
                message=str(e),
                mirror=task.descriptor.mirror,
            )

        except OSError as e:
            task.progress.status = DownloadStatus.ERROR
            self._emit(task, on_progress)
            logger.exception("Acquisition failed on filesystem", tool=tool_.value)
            return result(False, DownloadStatus.ERROR, error_code="filesystem_error", message=str(e))

        except Exception as e:
            task.progress.status = DownloadStatus.ERROR
            self._emit(task, on_progress)
            logger.exception("Acquisition failed unexpectedly", tool=tool_.value)
            return result(
                False,
                DownloadStatus.ERROR,
                error_code=AcquisitionError.code,
                message=str(e),
                mirror=task.descriptor.mirror,
            )

        finally:
            self._tasks.pop(key, None)

    async def _run(
        self,
        task: DownloadTask,
        descriptor: ArtifactDescriptor,
        on_progress: Optional[ProgressCallback],
    ) -> Path:
        temp_dir = self.store.temp_dir(descriptor.tool, descriptor.platform, descriptor.arch)
        if temp_dir.exists():
            shutil.rmtree(temp_dir, ignore_errors=True)
        temp_dir.mkdir(parents=True, exist_ok=True)

        archive = temp_dir / descriptor.archive_name
        extracted = temp_dir / "extracted"

        def relay(progress: DownloadProgress) -> None:
            task.progress = progress
            self._emit(task, on_progress)

        logger.info(
            "Downloading",
            tool=descriptor.tool.value,
            platform=descriptor.platform.value,
            arch=descriptor.arch.value,
            mirror=descriptor.mirror.value,
            url=descriptor.url,
        )
        try:
            task.token.raise_if_cancelled()
            await self.downloader.download(
                descriptor.url,
                archive,
                user_agent=user_agent_for(descriptor.tool),
                expected_size=descriptor.size,
                token=task.token,
                on_progress=relay,
            )

            task.token.raise_if_cancelled()
            if descriptor.sha256:
                self._set_phase(task, DownloadStatus.VERIFYING, on_progress)
                verify_sha256(archive, descriptor.sha256)

            task.token.raise_if_cancelled()
            self._set_phase(task, DownloadStatus.EXTRACTING, on_progress, percent=EXTRACTING_PERCENT)
            await self.extractor.extract(archive, extracted)

            task.token.raise_if_cancelled()
            path = self.store.install(descriptor, extracted)

            self._set_phase(task, DownloadStatus.COMPLETED, on_progress, percent=100.0)
            return path
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def _set_phase(
        self,
        task: DownloadTask,
        status: DownloadStatus,
        on_progress: Optional[ProgressCallback],
        percent: Optional[float] = None,
    ) -> None:
        task.progress.status = status
        if percent is not None:
            task.progress.percent = percent
        task.progress.speed = 0.0
        task.progress.remaining_time = 0.0
        self._emit(task, on_progress)

    @staticmethod
    def _emit(task: DownloadTask, on_progress: Optional[ProgressCallback]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(task.progress)
        except Exception:
            logger.exception("Progress callback raised", tool=task.descriptor.tool.value)

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self, tool, platform=None, arch=None) -> bool:
        task = self._tasks.get(self._key(tool, platform, arch))
        if task is None:
            return False
        task.token.cancel()
        logger.info("Cancellation requested", tool=task.descriptor.tool.value)
        return True

    def remove(self, tool, platform=None, arch=None) -> bool:
        key = self._key(tool, platform, arch)
        if key in self._tasks:
            logger.warning("Refusing to remove while acquisition in progress", tool=key[0].value)
            return False

        removed = False
        seen = set()
        for descriptor in self._descriptors(key):
            if descriptor.install_dir_name in seen:
                continue
            seen.add(descriptor.install_dir_name)
            removed = self.store.remove(descriptor) or removed
        return removed

    def cleanup_temp_files(self) -> None:
        busy = {key[0] for key in self._tasks}
        for tool in self.tools - busy:
            self.store.clear_temp(tool)

    def shutdown(self) -> None:
        for task in list(self._tasks.values()):
            task.token.cancel()
