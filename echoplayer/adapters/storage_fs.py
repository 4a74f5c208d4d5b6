"""
A concrete ArtifactStore over the local filesystem.

Layout: <root>/<tool>/<version>-<platform>-<arch>/<executable>
"""
import hashlib
import os
import re
import shutil
from pathlib import Path, PurePosixPath
from typing import Optional

from echoplayer.adapters.archive import archive_base_name
from echoplayer.internal import paths
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.artifacts import ArtifactStore, InstalledArtifact
from echoplayer.kernel.contracts import Arch, ArtifactDescriptor, Platform, Tool
from echoplayer.kernel.errors import ChecksumMismatchError, ExtractionError

logger = get_logger(__name__)


def calculate_sha256(file_path: Path) -> str:
    h = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(1024 * 1024), b""):
            h.update(chunk)
    return h.hexdigest()


def verify_sha256(file_path: Path, expected: str) -> None:
    actual = calculate_sha256(file_path)
    if actual.lower() != expected.lower():
        raise ChecksumMismatchError(f"Checksum mismatch for {file_path.name}")


def _wildcard_to_regex(pattern: str) -> re.Pattern:
    parts = (re.escape(part) for part in pattern.split("*"))
    return re.compile("^" + "[^/]*".join(parts) + "$")


def find_file(root: Path, pattern: str) -> Optional[Path]:
    """
    Recursive search under `root`.

    `pattern` is matched against each file's root-relative POSIX path; when
    nothing matches, its last segment is matched against file names alone.
    """
    full = _wildcard_to_regex(pattern)
    name_only = _wildcard_to_regex(PurePosixPath(pattern).name)

    by_name = None
    for candidate in sorted(root.rglob("*")):
        if not candidate.is_file():
            continue
        relative = candidate.relative_to(root).as_posix()
        if full.match(relative):
            return candidate
        if by_name is None and name_only.match(candidate.name):
            by_name = candidate
    return by_name


class FileSystemArtifactStore(ArtifactStore):
    """
    Installs and removes executables under a binaries root directory.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = root or paths.get_binaries_dir()

    def install_dir(self, descriptor: ArtifactDescriptor) -> Path:
        return paths.get_install_dir(
            descriptor.tool.value,
            descriptor.version,
            descriptor.platform.value,
            descriptor.arch.value,
            root=self.root,
        )

    def executable_path(self, descriptor: ArtifactDescriptor) -> Path:
        return self.install_dir(descriptor) / descriptor.executable_name

    def temp_dir(self, tool: Tool, platform: Platform, arch: Arch) -> Path:
        return paths.get_temp_dir(tool.value, platform.value, arch.value, root=self.root)

    def locate_executable(self, descriptor: ArtifactDescriptor, extracted_root: Path) -> Path:
        relative = descriptor.extract_path
        if "*" in relative:
            found = find_file(extracted_root, relative)
            if found is None:
                raise ExtractionError(f"No file matching {relative} in archive")
            return found

        base = archive_base_name(descriptor.archive_name)
        candidates = [
            extracted_root / relative,
            extracted_root / base / relative,
            extracted_root / base / descriptor.executable_name,
        ]
        for candidate in candidates:
            if candidate.is_file():
                return candidate

        found = find_file(extracted_root, descriptor.executable_name)
        if found is None:
            raise ExtractionError(f"{descriptor.executable_name} not found in archive")
        return found

    def install(self, descriptor: ArtifactDescriptor, extracted_root: Path) -> Path:
        source = self.locate_executable(descriptor, extracted_root)
        target = self.executable_path(descriptor)
        target.parent.mkdir(parents=True, exist_ok=True)

        shutil.copyfile(source, target)
        if descriptor.platform != Platform.WIN32:
            os.chmod(target, 0o755)

        logger.info("Executable installed", tool=descriptor.tool.value, path=str(target))
        return target

    def is_installed(self, descriptor: ArtifactDescriptor) -> bool:
        return self.executable_path(descriptor).is_file()

    def remove(self, descriptor: ArtifactDescriptor) -> bool:
        install_dir = self.install_dir(descriptor)
        if not install_dir.exists():
            return False
        shutil.rmtree(install_dir)
        logger.info("Removed installed artifact", tool=descriptor.tool.value, path=str(install_dir))
        return True

    def list_installed(self, tool: Tool) -> list[InstalledArtifact]:
        tool_dir = paths.get_tool_dir(tool.value, root=self.root)
        if not tool_dir.is_dir():
            return []

        found = []
        for entry in sorted(tool_dir.iterdir()):
            if not entry.is_dir() or entry.name.startswith("."):
                continue
            # <version>-<platform>-<arch>; versions may contain dashes
            try:
                version, plat, arch = entry.name.rsplit("-", 2)
                platform_ = Platform(plat)
                arch_ = Arch(arch)
            except ValueError:
                continue
            exe = tool.value + (".exe" if platform_ == Platform.WIN32 else "")
            artifact = InstalledArtifact(tool, platform_, arch_, version, entry / exe)
            if artifact.is_available:
                found.append(artifact)
        return found

    def clear_temp(self, tool: Tool) -> None:
        temp_root = paths.get_tool_dir(tool.value, root=self.root) / ".temp"
        if temp_root.exists():
            shutil.rmtree(temp_root, ignore_errors=True)
            logger.info("Cleaned temporary files", tool=tool.value, path=str(temp_root))
