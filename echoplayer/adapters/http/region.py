"""
Country lookup by IP geolocation, used to pick a download mirror.
"""
import asyncio
from typing import Optional

import httpx

from echoplayer.internal.constants import (
    DEFAULT_COUNTRY,
    REGION_COUNTRIES,
    REGION_LOOKUP_TIMEOUT,
    REGION_LOOKUP_URL,
)
from echoplayer.internal.logging import get_logger

logger = get_logger(__name__)


class RegionLookup:
    """
    Resolves the caller's country once per instance.

    Concurrent callers share a single in-flight request; any failure caches
    the fallback country so the lookup is never repeated implicitly.
    """

    def __init__(
        self,
        url: str = REGION_LOOKUP_URL,
        timeout: float = REGION_LOOKUP_TIMEOUT,
        fallback_country: str = DEFAULT_COUNTRY,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = timeout
        self.fallback_country = fallback_country
        self._transport = transport
        self._country: Optional[str] = None
        self._failed = False
        self._inflight: Optional[asyncio.Task] = None

    @property
    def cached_country(self) -> Optional[str]:
        return self._country

    @property
    def lookup_failed(self) -> bool:
        return self._failed

    async def get_country(self, force_refresh: bool = False) -> str:
        if self._country is not None and not force_refresh:
            return self._country

        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._fetch())
        # shield so one impatient caller cannot cancel the shared request
        return await asyncio.shield(self._inflight)

    async def _fetch(self) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(self.url, headers={"Accept": "application/json"})
                r.raise_for_status()
                country = r.json().get("country")
            if not country:
                raise ValueError("country missing from response")
            self._country = str(country).upper()
            self._failed = False
            logger.info("Region detected", country=self._country)
        except Exception as e:
            self._country = self.fallback_country
            self._failed = True
            logger.warning("Region detection failed, using fallback", fallback=self.fallback_country, error=str(e))
        return self._country

    @staticmethod
    def is_region_country(country: Optional[str]) -> bool:
        return bool(country) and country.lower() in REGION_COUNTRIES

    def clear_cache(self) -> None:
        self._country = None
        self._failed = False
        self._inflight = None
