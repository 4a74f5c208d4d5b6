"""
Defines the contracts for installed binary artifacts.

The acquisition manager talks to storage and extraction only through these
ports, so the filesystem layout and the archive tooling stay swappable.
"""
from abc import abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from echoplayer.kernel.contracts import Arch, ArtifactDescriptor, Platform, Tool


@dataclass
class InstalledArtifact:
    """
    A handle to one installed executable. The executable existing as a
    regular file is the only signal that the artifact is installed.
    """
    tool: Tool
    platform: Platform
    arch: Arch
    version: str
    location: Path

    @property
    def is_available(self) -> bool:
        return self.location.is_file()

    def to_dict(self) -> dict:
        return {
            "tool": self.tool.value,
            "platform": self.platform.value,
            "arch": self.arch.value,
            "version": self.version,
            "path": str(self.location),
        }


class ArtifactStore(Protocol):
    """
    The port for the on-disk layout of installed artifacts.
    """

    @abstractmethod
    def executable_path(self, descriptor: ArtifactDescriptor) -> Path:
        """
        Where the executable for `descriptor` lives once installed.
        Pure path computation, no I/O.
        """
        ...

    @abstractmethod
    def install(self, descriptor: ArtifactDescriptor, extracted_root: Path) -> Path:
        """
        Locate the executable under `extracted_root`, copy it into place and
        make it executable. Returns the installed path.
        """
        ...

    @abstractmethod
    def remove(self, descriptor: ArtifactDescriptor) -> bool:
        ...

    @abstractmethod
    def list_installed(self, tool: Tool) -> list[InstalledArtifact]:
        ...


class ArchiveExtractor(Protocol):
    """
    The port for archive decompression.
    """

    @abstractmethod
    async def extract(self, archive: Path, destination: Path) -> None:
        """
        Extract `archive` into `destination`. Raises ExtractionError on failure.
        """
        ...
