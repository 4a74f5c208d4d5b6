"""
Data contracts shared by the acquisition manager, the environment bootstrap
and the sidecar supervisor.

These are plain data types with as little logic as possible. Adapters and
services exchange them; nothing here performs I/O.
"""
import platform as _platform
import sys
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Awaitable, Callable, Optional, Protocol
from urllib.parse import urlparse

from pydantic import BaseModel

from echoplayer.kernel.errors import DownloadCancelledError


# ---------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------

class Tool(str, Enum):
    FFMPEG = "ffmpeg"
    FFPROBE = "ffprobe"
    UV = "uv"


class Platform(str, Enum):
    WIN32 = "win32"
    DARWIN = "darwin"
    LINUX = "linux"

    @classmethod
    def current(cls) -> "Platform":
        if sys.platform.startswith("win"):
            return cls.WIN32
        if sys.platform == "darwin":
            return cls.DARWIN
        return cls.LINUX


class Arch(str, Enum):
    X64 = "x64"
    ARM64 = "arm64"

    @classmethod
    def current(cls) -> "Arch":
        machine = _platform.machine().lower()
        if machine in ("arm64", "aarch64", "armv8", "armv8l"):
            return cls.ARM64
        return cls.X64


class Mirror(str, Enum):
    DEFAULT = "default"
    REGION = "region"


# ---------------------------------------------------------------------
# Catalog entries
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ArtifactDescriptor:
    """
    One downloadable artifact for a (tool, platform, arch) quadrant on one mirror.

    `extract_path` is relative to the archive root and may contain `*`
    wildcards when the upstream archive embeds a version in a directory name.
    """
    tool: Tool
    platform: Platform
    arch: Arch
    version: str
    url: str
    size: int
    extract_path: str
    sha256: Optional[str] = None
    mirror: Mirror = Mirror.DEFAULT

    @property
    def key(self) -> tuple[Tool, Platform, Arch]:
        return (self.tool, self.platform, self.arch)

    @property
    def executable_name(self) -> str:
        return PurePosixPath(self.extract_path).name

    @property
    def archive_name(self) -> str:
        return PurePosixPath(urlparse(self.url).path).name

    @property
    def install_dir_name(self) -> str:
        return f"{self.version}-{self.platform.value}-{self.arch.value}"


# ---------------------------------------------------------------------
# Download progress
# ---------------------------------------------------------------------

class DownloadStatus(str, Enum):
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    VERIFYING = "verifying"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


@dataclass
class DownloadProgress:
    percent: float = 0.0
    downloaded: int = 0
    total: int = 0
    speed: float = 0.0  # bytes/s
    remaining_time: float = 0.0  # seconds
    status: DownloadStatus = DownloadStatus.DOWNLOADING

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


ProgressCallback = Callable[[DownloadProgress], None]


class CancellationToken:
    """
    Cooperative cancellation flag, checked between chunks and between phases.
    """

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise DownloadCancelledError("Download cancelled")


@dataclass
class DownloadTask:
    descriptor: ArtifactDescriptor
    progress: DownloadProgress = field(default_factory=DownloadProgress)
    token: CancellationToken = field(default_factory=CancellationToken)
    started_at: float = field(default_factory=time.time)

    @property
    def key(self) -> tuple[Tool, Platform, Arch]:
        return self.descriptor.key


@dataclass
class AcquisitionResult:
    ok: bool
    status: DownloadStatus
    tool: Tool
    platform: Platform
    arch: Arch
    path: Optional[str] = None
    mirror: Optional[Mirror] = None
    error_code: Optional[str] = None
    message: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "status": self.status.value,
            "tool": self.tool.value,
            "platform": self.platform.value,
            "arch": self.arch.value,
            "path": self.path,
            "mirror": self.mirror.value if self.mirror else None,
            "error_code": self.error_code,
            "message": self.message,
        }


# ---------------------------------------------------------------------
# Environment bootstrap
# ---------------------------------------------------------------------

@dataclass
class ToolchainInfo:
    exists: bool
    path: Optional[str] = None
    version: Optional[str] = None
    is_system: bool = False
    is_downloaded: bool = False


@dataclass
class VenvInfo:
    exists: bool
    venv_path: str
    python_path: Optional[str] = None
    python_version: Optional[str] = None
    has_project_config: bool = False
    has_lockfile: bool = False


class BootstrapStage(str, Enum):
    INIT = "init"
    TOOLCHAIN = "toolchain"
    VENV = "venv"
    DEPS = "deps"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class InstallProgress:
    stage: BootstrapStage
    message: str
    percent: int
    error: Optional[str] = None


InstallProgressCallback = Callable[[InstallProgress], None]


@dataclass(frozen=True)
class PyPIMirror:
    name: str
    url: str
    test_url: str
    location: str


# ---------------------------------------------------------------------
# Sidecar
# ---------------------------------------------------------------------

class SidecarStatus(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


class SidecarConfig(BaseModel):
    """
    Launch configuration for the media server. Every field is optional;
    only fields that are set end up in the child environment.
    """
    host: Optional[str] = None
    port: Optional[int] = None
    log_level: Optional[str] = None
    debug: Optional[bool] = None
    sessions_root: Optional[str] = None
    hls_segment_cache_root: Optional[str] = None
    audio_cache_root: Optional[str] = None
    hls_time: Optional[int] = None
    hls_list_size: Optional[int] = None
    gop_seconds: Optional[int] = None
    max_concurrent: Optional[int] = None
    session_ttl: Optional[int] = None
    ffmpeg_path: Optional[str] = None
    ffprobe_path: Optional[str] = None
    prefer_hw: Optional[bool] = None
    seek_buffer: Optional[float] = None
    session_reuse_tolerance: Optional[float] = None
    cleanup_interval: Optional[int] = None
    enable_hybrid_mode: Optional[bool] = None
    audio_preprocessor_concurrent: Optional[int] = None
    audio_track_ttl_hours: Optional[int] = None


@dataclass
class SidecarState:
    status: SidecarStatus = SidecarStatus.STOPPED
    pid: Optional[int] = None
    port: Optional[int] = None
    start_time: Optional[float] = None
    last_error: Optional[str] = None
    error_code: Optional[str] = None
    restart_attempts: int = 0

    @property
    def uptime(self) -> Optional[float]:
        if self.status != SidecarStatus.RUNNING or self.start_time is None:
            return None
        return max(0.0, time.time() - self.start_time)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "pid": self.pid,
            "port": self.port,
            "start_time": self.start_time,
            "uptime": self.uptime,
            "last_error": self.last_error,
            "error_code": self.error_code,
            "restart_attempts": self.restart_attempts,
        }


PortListener = Callable[[Optional[int]], None]


# ---------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------

class SidecarProcessHandle(Protocol):
    """
    What the supervisor needs from a launched child process.
    """
    pid: Optional[int]
    returncode: Optional[int]

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...


ProcessLauncher = Callable[[list[str], str, dict[str, str]], Awaitable[SidecarProcessHandle]]


class HealthProbe(Protocol):
    async def check(self, host: str, port: int) -> bool:
        ...
