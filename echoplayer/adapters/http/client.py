import httpx
from pathlib import Path
from typing import AsyncGenerator, Optional

from echoplayer.internal import paths
from echoplayer.internal.constants import (
    HEALTH_PATH,
    HEALTH_REQUEST_TIMEOUT,
    RUNTIME_HOST,
    RUNTIME_PORT,
)
from echoplayer.internal.logging import get_logger
from echoplayer.runtime.security import load_token

logger = get_logger(__name__)


class MediaServerHealthProbe:
    """
    Reachability check against the media server's health endpoint.
    Any 2xx is healthy; everything else, including transport errors, is not.
    """

    def __init__(
        self,
        path: str = HEALTH_PATH,
        timeout: float = HEALTH_REQUEST_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.path = path
        self.timeout = timeout
        self._transport = transport

    async def check(self, host: str, port: int) -> bool:
        url = f"http://{host}:{port}{self.path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                r = await client.get(url)
                return r.is_success
        except httpx.HTTPError as e:
            logger.debug("Health request failed", url=url, error=str(e))
            return False


class RuntimeClient:
    """
    Thin async client for the local control API.
    """

    def __init__(
        self,
        host: str = RUNTIME_HOST,
        port: int = RUNTIME_PORT,
        token: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = f"http://{host}:{port}"
        self.timeout = timeout
        self._token = token if token is not None else load_token(Path(paths.get_runtime_token_file()))
        self._transport = transport

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            r = await client.request(method, path, headers=self._headers(), **kwargs)
            r.raise_for_status()
            return r.json()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def health(self) -> dict:
        return await self._request("GET", "/api/v1/health")

    async def media_server(self) -> dict:
        return await self._request("GET", "/api/v1/media-server")

    async def start_media_server(self) -> dict:
        return await self._request("POST", "/api/v1/media-server/start", timeout=60.0)

    async def stop_media_server(self) -> dict:
        return await self._request("POST", "/api/v1/media-server/stop", timeout=30.0)

    async def restart_media_server(self) -> dict:
        return await self._request("POST", "/api/v1/media-server/restart", timeout=60.0)

    async def binaries(self) -> dict:
        return await self._request("GET", "/api/v1/binaries")

    async def port_events(self) -> AsyncGenerator[Optional[int], None]:
        """
        Yields the media server port each time it changes (None when stopped).
        """
        async with httpx.AsyncClient(base_url=self.base_url, timeout=None, transport=self._transport) as client:
            async with client.stream("GET", "/api/v1/media-server/events", headers=self._headers()) as response:
                response.raise_for_status()
                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    value = line[len("data:"):].strip()
                    yield int(value) if value.isdigit() else None

    def __repr__(self) -> str:
        return f"<RuntimeClient base_url={self.base_url}>"
