"""
Mirror selection for binary downloads and Python package indexes.
"""
import asyncio
import time
from typing import Optional

import httpx

from echoplayer.adapters.http.region import RegionLookup
from echoplayer.internal.constants import PYPI_PROBE_TIMEOUT, REGION_LOOKUP_WAIT
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.catalog import BinaryCatalog
from echoplayer.kernel.contracts import Arch, ArtifactDescriptor, Mirror, Platform, PyPIMirror, Tool

logger = get_logger(__name__)


# ---------------------------------------------------------------------
# Binary mirrors
# ---------------------------------------------------------------------

class MirrorSelector:
    """
    Chooses between the default and region catalog entries for a quadrant.

    The region lookup is awaited for at most `lookup_wait` seconds. When it
    does not answer in time the last known preference is reused; when nothing
    is known yet, or the lookup itself failed, `assume_region_on_failure`
    decides.
    """

    def __init__(
        self,
        catalog: BinaryCatalog,
        region: RegionLookup,
        lookup_wait: float = REGION_LOOKUP_WAIT,
        assume_region_on_failure: bool = False,
    ):
        self.catalog = catalog
        self.region = region
        self.lookup_wait = lookup_wait
        self.assume_region_on_failure = assume_region_on_failure
        self._last_preference: Optional[bool] = None

    async def prefer_region(self) -> bool:
        try:
            country = await asyncio.wait_for(self.region.get_country(), timeout=self.lookup_wait)
        except asyncio.TimeoutError:
            preference = (
                self._last_preference
                if self._last_preference is not None
                else self.assume_region_on_failure
            )
            logger.warning("Region lookup timed out", prefer_region=preference)
            return preference

        if self.region.lookup_failed:
            preference = self.assume_region_on_failure
        else:
            preference = RegionLookup.is_region_country(country)
        self._last_preference = preference
        return preference

    async def choose(self, tool: Tool, platform: Platform, arch: Arch) -> Optional[ArtifactDescriptor]:
        default = self.catalog.lookup(tool, platform, arch, Mirror.DEFAULT)
        if await self.prefer_region():
            regional = self.catalog.lookup(tool, platform, arch, Mirror.REGION)
            if regional is not None:
                return regional
        return default

    def fallback_for(self, descriptor: ArtifactDescriptor) -> Optional[ArtifactDescriptor]:
        """
        The default-mirror descriptor to retry with after a region-mirror failure.
        """
        if descriptor.mirror != Mirror.REGION:
            return None
        return self.catalog.lookup(descriptor.tool, descriptor.platform, descriptor.arch, Mirror.DEFAULT)


# ---------------------------------------------------------------------
# PyPI mirrors
# ---------------------------------------------------------------------

PYPI_MIRRORS = [
    PyPIMirror(
        name="tsinghua",
        url="https://pypi.tuna.tsinghua.edu.cn/simple/",
        test_url="https://pypi.tuna.tsinghua.edu.cn/simple/pip/",
        location="China",
    ),
    PyPIMirror(
        name="aliyun",
        url="https://mirrors.aliyun.com/pypi/simple/",
        test_url="https://mirrors.aliyun.com/pypi/simple/pip/",
        location="China",
    ),
    PyPIMirror(
        name="douban",
        url="https://pypi.douban.com/simple/",
        test_url="https://pypi.douban.com/simple/pip/",
        location="China",
    ),
    PyPIMirror(
        name="official",
        url="https://pypi.org/simple/",
        test_url="https://pypi.org/simple/pip/",
        location="Global",
    ),
]

OFFICIAL_PYPI = PYPI_MIRRORS[-1]


class PyPIMirrorSelector:
    """
    Probes every package index with a HEAD request and keeps the fastest.
    """

    def __init__(
        self,
        mirrors: Optional[list[PyPIMirror]] = None,
        timeout: float = PYPI_PROBE_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.mirrors = mirrors or list(PYPI_MIRRORS)
        self.timeout = timeout
        self._transport = transport
        self._selected: Optional[PyPIMirror] = None
        self._inflight: Optional[asyncio.Task] = None

    @property
    def selected(self) -> Optional[PyPIMirror]:
        return self._selected

    async def select_fastest(self) -> PyPIMirror:
        if self._selected is not None:
            return self._selected
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._probe_all())
        self._selected = await asyncio.shield(self._inflight)
        return self._selected

    async def _probe_all(self) -> PyPIMirror:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            timings = await asyncio.gather(*(self._probe(client, m) for m in self.mirrors))

        reachable = [(elapsed, m) for elapsed, m in zip(timings, self.mirrors) if elapsed is not None]
        if not reachable:
            official = next((m for m in self.mirrors if m.name == OFFICIAL_PYPI.name), self.mirrors[0])
            logger.warning("No package index reachable, using official index", mirror=official.name)
            return official

        elapsed, fastest = min(reachable, key=lambda pair: pair[0])
        logger.info("Selected package index", mirror=fastest.name, location=fastest.location, elapsed=round(elapsed, 3))
        return fastest

    async def _probe(self, client: httpx.AsyncClient, mirror: PyPIMirror) -> Optional[float]:
        started = time.monotonic()
        try:
            r = await client.head(mirror.test_url)
        except httpx.HTTPError as e:
            logger.debug("Package index probe failed", mirror=mirror.name, error=str(e))
            return None
        if not r.is_success:
            logger.debug("Package index probe rejected", mirror=mirror.name, status=r.status_code)
            return None
        return time.monotonic() - started

    def set_mirror(self, name: str) -> PyPIMirror:
        mirror = next((m for m in self.mirrors if m.name == name), None)
        if mirror is None:
            raise ValueError(f"Unknown package index: {name}")
        self._selected = mirror
        return mirror

    def clear_cache(self) -> None:
        self._selected = None
        self._inflight = None
