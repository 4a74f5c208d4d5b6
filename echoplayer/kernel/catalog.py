"""
Static catalog of downloadable media toolchain binaries.

Each mirror maps (tool, platform, arch) to one ArtifactDescriptor. The
region mirror only proxies GitHub-hosted artifacts; quadrants it does not
define are served from the default mirror.
"""
from typing import Iterable, Optional

from echoplayer.kernel.contracts import Arch, ArtifactDescriptor, Mirror, Platform, Tool

MB = 1024 * 1024

FFMPEG_VERSION = "6.1"
UV_VERSION = "latest"

GITHUB_PROXY = "https://ghproxy.com/"

_BTBN = "https://github.com/BtbN/FFmpeg-Builds/releases/download/latest"
_EVERMEET = "https://evermeet.cx/ffmpeg"
_VANSICKLE = "https://johnvansickle.com/ffmpeg/releases"
_UV = "https://github.com/astral-sh/uv/releases/latest/download"

CatalogKey = tuple[Tool, Platform, Arch]


def _ffmpeg_family(tool: Tool, darwin_size: int) -> list[ArtifactDescriptor]:
    exe = tool.value
    win = [
        (Arch.X64, "win64", 89 * MB),
        (Arch.ARM64, "winarm64", 85 * MB),
    ]
    linux = [
        (Arch.X64, "amd64", 35 * MB),
        (Arch.ARM64, "arm64", 33 * MB),
    ]

    entries = []
    for arch, build, size in win:
        entries.append(ArtifactDescriptor(
            tool=tool,
            platform=Platform.WIN32,
            arch=arch,
            version=FFMPEG_VERSION,
            url=f"{_BTBN}/ffmpeg-master-latest-{build}-gpl.zip",
            size=size,
            extract_path=f"ffmpeg-master-latest-{build}-gpl/bin/{exe}.exe",
        ))
    # evermeet ships a single universal binary per tool
    for arch in (Arch.X64, Arch.ARM64):
        entries.append(ArtifactDescriptor(
            tool=tool,
            platform=Platform.DARWIN,
            arch=arch,
            version=FFMPEG_VERSION,
            url=f"{_EVERMEET}/{exe}-{FFMPEG_VERSION}.zip",
            size=darwin_size,
            extract_path=exe,
        ))
    for arch, build, size in linux:
        entries.append(ArtifactDescriptor(
            tool=tool,
            platform=Platform.LINUX,
            arch=arch,
            version=FFMPEG_VERSION,
            url=f"{_VANSICKLE}/ffmpeg-release-{build}-static.tar.xz",
            size=size,
            extract_path=f"ffmpeg-*-{build}-static/{exe}",
        ))
    return entries


def _uv() -> list[ArtifactDescriptor]:
    targets = [
        (Platform.WIN32, Arch.X64, "x86_64-pc-windows-msvc.zip", 15 * MB, "uv.exe"),
        (Platform.WIN32, Arch.ARM64, "aarch64-pc-windows-msvc.zip", 15 * MB, "uv.exe"),
        (Platform.DARWIN, Arch.X64, "x86_64-apple-darwin.tar.gz", 12 * MB, "uv"),
        (Platform.DARWIN, Arch.ARM64, "aarch64-apple-darwin.tar.gz", 12 * MB, "uv"),
        (Platform.LINUX, Arch.X64, "x86_64-unknown-linux-gnu.tar.gz", 12 * MB, "uv"),
        (Platform.LINUX, Arch.ARM64, "aarch64-unknown-linux-gnu.tar.gz", 12 * MB, "uv"),
    ]
    return [
        ArtifactDescriptor(
            tool=Tool.UV,
            platform=plat,
            arch=arch,
            version=UV_VERSION,
            url=f"{_UV}/uv-{target}",
            size=size,
            extract_path=exe,
        )
        for plat, arch, target, size, exe in targets
    ]


def _proxied(descriptor: ArtifactDescriptor) -> Optional[ArtifactDescriptor]:
    if not descriptor.url.startswith("https://github.com/"):
        return None
    return ArtifactDescriptor(
        tool=descriptor.tool,
        platform=descriptor.platform,
        arch=descriptor.arch,
        version=descriptor.version,
        url=GITHUB_PROXY + descriptor.url,
        size=descriptor.size,
        extract_path=descriptor.extract_path,
        sha256=descriptor.sha256,
        mirror=Mirror.REGION,
    )


def _index(descriptors: Iterable[Optional[ArtifactDescriptor]]) -> dict[CatalogKey, ArtifactDescriptor]:
    return {d.key: d for d in descriptors if d is not None}


DEFAULT_DESCRIPTORS = [
    *_ffmpeg_family(Tool.FFMPEG, darwin_size=67 * MB),
    *_ffmpeg_family(Tool.FFPROBE, darwin_size=30 * MB),
    *_uv(),
]


class BinaryCatalog:
    """
    Lookup over the default and region mirrors.
    """

    def __init__(
        self,
        default: Optional[Iterable[ArtifactDescriptor]] = None,
        region: Optional[Iterable[ArtifactDescriptor]] = None,
    ):
        default = list(DEFAULT_DESCRIPTORS if default is None else default)
        if region is None:
            region = [_proxied(d) for d in default]
        self._mirrors: dict[Mirror, dict[CatalogKey, ArtifactDescriptor]] = {
            Mirror.DEFAULT: _index(default),
            Mirror.REGION: _index(region),
        }

    def lookup(
        self, tool: Tool, platform: Platform, arch: Arch, mirror: Mirror = Mirror.DEFAULT
    ) -> Optional[ArtifactDescriptor]:
        return self._mirrors[mirror].get((tool, platform, arch))

    def descriptors(self, tool: Tool, platform: Platform, arch: Arch) -> list[ArtifactDescriptor]:
        """
        Every descriptor for the quadrant, region mirror first.
        """
        found = [
            self.lookup(tool, platform, arch, Mirror.REGION),
            self.lookup(tool, platform, arch, Mirror.DEFAULT),
        ]
        return [d for d in found if d is not None]

    def supported(self, tool: Tool) -> list[ArtifactDescriptor]:
        return [d for key, d in self._mirrors[Mirror.DEFAULT].items() if key[0] == tool]

    def all_descriptors(self, mirror: Mirror = Mirror.DEFAULT) -> list[ArtifactDescriptor]:
        return list(self._mirrors[mirror].values())

    def is_supported(self, tool: Tool, platform: Platform, arch: Arch) -> bool:
        return bool(self.descriptors(tool, platform, arch))
