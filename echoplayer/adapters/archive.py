"""
Archive extraction through the platform's own decompression tools.
"""
import asyncio
import sys
from pathlib import Path

from echoplayer.internal.logging import get_logger
from echoplayer.kernel.artifacts import ArchiveExtractor
from echoplayer.kernel.errors import ExtractionError

logger = get_logger(__name__)

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.xz", ".zip")


def archive_base_name(name: str) -> str:
    """
    File name without its archive extension: `uv-x.tar.gz` -> `uv-x`.
    """
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class SubprocessArchiveExtractor(ArchiveExtractor):
    """
    Dispatches on the archive extension:

    - .zip: `unzip -o` (PowerShell Expand-Archive on Windows)
    - .tar.gz / .tgz: `tar -xzf`
    - .tar.xz: `tar -xJf`

    Extraction is never interrupted once started.
    """

    def __init__(self, windows: bool = sys.platform == "win32"):
        self.windows = windows

    def command_for(self, archive: Path, destination: Path) -> list[str]:
        name = archive.name
        if name.endswith(".zip"):
            if self.windows:
                return [
                    "powershell", "-NoProfile", "-NonInteractive", "-Command",
                    f"Expand-Archive -Path '{archive}' -DestinationPath '{destination}' -Force",
                ]
            return ["unzip", "-o", "-q", str(archive), "-d", str(destination)]
        if name.endswith((".tar.gz", ".tgz")):
            return ["tar", "-xzf", str(archive), "-C", str(destination)]
        if name.endswith(".tar.xz"):
            return ["tar", "-xJf", str(archive), "-C", str(destination)]
        raise ExtractionError(f"Unsupported archive format: {name}")

    async def extract(self, archive: Path, destination: Path) -> None:
        destination.mkdir(parents=True, exist_ok=True)
        command = self.command_for(archive, destination)
        logger.info("Extracting archive", archive=str(archive), tool=command[0])

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExtractionError(f"Cannot run {command[0]}: {e}") from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            detail = (stderr or stdout or b"").decode(errors="ignore").strip()
            logger.error("Extraction failed", archive=str(archive), returncode=process.returncode, detail=detail[:500])
            raise ExtractionError(f"{command[0]} exited with {process.returncode}")
