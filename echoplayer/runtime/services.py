"""
Composition root: wires catalog, mirrors, acquisition managers, bootstrap
and supervisor into one long-lived container.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from echoplayer.adapters.http.region import RegionLookup
from echoplayer.adapters.storage_fs import FileSystemArtifactStore
from echoplayer.internal import paths
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.catalog import BinaryCatalog
from echoplayer.kernel.contracts import Tool
from echoplayer.runtime.acquisition import BinaryAcquisitionManager
from echoplayer.runtime.bootstrap import EnvironmentBootstrap
from echoplayer.runtime.mirror import MirrorSelector, PyPIMirrorSelector
from echoplayer.runtime.supervisor import MediaServerSupervisor

logger = get_logger(__name__)

MEDIA_TOOLS = (Tool.FFMPEG, Tool.FFPROBE)
TOOLCHAIN_TOOLS = (Tool.UV,)


@dataclass
class Services:
    catalog: BinaryCatalog
    region: RegionLookup
    selector: MirrorSelector
    media_binaries: BinaryAcquisitionManager
    toolchain: BinaryAcquisitionManager
    bootstrap: EnvironmentBootstrap
    supervisor: MediaServerSupervisor

    def manager_for(self, tool) -> BinaryAcquisitionManager:
        tool = Tool(tool)
        return self.toolchain if tool in self.toolchain.tools else self.media_binaries

    @property
    def managers(self) -> list[BinaryAcquisitionManager]:
        return [self.media_binaries, self.toolchain]

    async def shutdown(self) -> None:
        for manager in self.managers:
            manager.shutdown()
        await self.supervisor.shutdown()
        logger.info("Services shut down")


def build_services(
    binaries_root: Optional[Path] = None,
    media_server_dir: Optional[Path] = None,
    assume_region_on_failure: bool = False,
) -> Services:
    catalog = BinaryCatalog()
    region = RegionLookup()
    selector = MirrorSelector(catalog, region, assume_region_on_failure=assume_region_on_failure)
    store = FileSystemArtifactStore(binaries_root or paths.get_binaries_dir())

    media_binaries = BinaryAcquisitionManager(MEDIA_TOOLS, selector, store=store)
    toolchain = BinaryAcquisitionManager(TOOLCHAIN_TOOLS, selector, store=store)

    bootstrap = EnvironmentBootstrap(
        toolchain,
        media_server_dir or paths.get_media_server_dir(),
        pypi=PyPIMirrorSelector(),
    )
    supervisor = MediaServerSupervisor(bootstrap, binaries=media_binaries)

    return Services(
        catalog=catalog,
        region=region,
        selector=selector,
        media_binaries=media_binaries,
        toolchain=toolchain,
        bootstrap=bootstrap,
        supervisor=supervisor,
    )
