"""
Streamed HTTP downloads with manual redirect handling and progress reporting.
"""
import time
from collections import deque
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urljoin

import httpx

from echoplayer.internal.constants import (
    DOWNLOAD_CHUNK_SIZE,
    HTTP_TIMEOUT,
    MAX_REDIRECTS,
    PROGRESS_INTERVAL,
    SPEED_WINDOW,
)
from echoplayer.internal.logging import get_logger
from echoplayer.kernel.contracts import (
    CancellationToken,
    DownloadProgress,
    DownloadStatus,
    ProgressCallback,
)
from echoplayer.kernel.errors import (
    DownloadCancelledError,
    HttpStatusError,
    NetworkError,
    TooManyRedirectsError,
)

logger = get_logger(__name__)

REDIRECT_STATUSES = (301, 302)


class SpeedMeter:
    """
    Transfer speed averaged over a sliding time window.
    """

    def __init__(self, window: float = SPEED_WINDOW, clock: Callable[[], float] = time.monotonic):
        self._window = window
        self._clock = clock
        self._samples: deque[tuple[float, int]] = deque()

    def update(self, total_bytes: int) -> float:
        now = self._clock()
        self._samples.append((now, total_bytes))
        while len(self._samples) > 2 and now - self._samples[1][0] >= self._window:
            self._samples.popleft()
        return self.speed

    @property
    def speed(self) -> float:
        if len(self._samples) < 2:
            return 0.0
        (t0, b0), (t1, b1) = self._samples[0], self._samples[-1]
        elapsed = t1 - t0
        if elapsed <= 0:
            return 0.0
        return (b1 - b0) / elapsed


class HttpDownloader:
    """
    Downloads a URL to a file.

    Redirects are followed by hand so that only 301/302 are honoured and the
    hop count is bounded; every other non-200 status fails with its code.
    The partial file is removed on cancellation or any failure.
    """

    def __init__(
        self,
        timeout: float = HTTP_TIMEOUT,
        max_redirects: int = MAX_REDIRECTS,
        progress_interval: float = PROGRESS_INTERVAL,
        chunk_size: int = DOWNLOAD_CHUNK_SIZE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.timeout = timeout
        self.max_redirects = max_redirects
        self.progress_interval = progress_interval
        self.chunk_size = chunk_size
        self._transport = transport
        self._clock = clock

    async def download(
        self,
        url: str,
        destination: Path,
        *,
        user_agent: str,
        expected_size: int = 0,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> int:
        """
        Fetch `url` into `destination` and return the number of bytes written.
        """
        token = token or CancellationToken()
        destination.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=False,
                headers={"User-Agent": user_agent},
                transport=self._transport,
            ) as client:
                current = url
                redirects = 0
                while True:
                    token.raise_if_cancelled()
                    async with client.stream("GET", current) as response:
                        if response.status_code in REDIRECT_STATUSES:
                            location = response.headers.get("location")
                            if not location:
                                raise NetworkError(f"Redirect without Location from {current}")
                            redirects += 1
                            if redirects > self.max_redirects:
                                raise TooManyRedirectsError(
                                    f"More than {self.max_redirects} redirects for {url}"
                                )
                            try:
                                current = urljoin(current, location)
                            except ValueError as e:
                                raise NetworkError(f"Invalid redirect location {location!r} from {current}") from e
                            logger.debug("Following redirect", status=response.status_code, location=current)
                            continue

                        if response.status_code != 200:
                            raise HttpStatusError(response.status_code, current)

                        return await self._write_body(
                            response, destination, expected_size, token, on_progress
                        )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            self._discard(destination)
            raise NetworkError(f"Request failed for {url}: {e}") from e
        except BaseException:
            self._discard(destination)
            raise

    async def _write_body(
        self,
        response: httpx.Response,
        destination: Path,
        expected_size: int,
        token: CancellationToken,
        on_progress: Optional[ProgressCallback],
    ) -> int:
        content_length = response.headers.get("content-length")
        total = int(content_length) if content_length and content_length.isdigit() else expected_size

        meter = SpeedMeter(clock=self._clock)
        downloaded = 0
        last_emit = self._clock()
        meter.update(0)

        with open(destination, "wb") as f:
            async for chunk in response.aiter_bytes(self.chunk_size):
                if token.cancelled:
                    raise DownloadCancelledError("Download cancelled")
                f.write(chunk)
                downloaded += len(chunk)
                meter.update(downloaded)

                now = self._clock()
                if on_progress and now - last_emit >= self.progress_interval:
                    last_emit = now
                    on_progress(self._progress(downloaded, total, meter.speed))

        token.raise_if_cancelled()
        if on_progress:
            on_progress(self._progress(downloaded, total or downloaded, meter.speed))

        logger.info("Download finished", path=str(destination), bytes=downloaded)
        return downloaded

    @staticmethod
    def _progress(downloaded: int, total: int, speed: float) -> DownloadProgress:
        percent = min(100.0, downloaded / total * 100) if total > 0 else 0.0
        remaining = (total - downloaded) / speed if speed > 0 and total > downloaded else 0.0
        return DownloadProgress(
            percent=round(percent, 2),
            downloaded=downloaded,
            total=total,
            speed=speed,
            remaining_time=remaining,
            status=DownloadStatus.DOWNLOADING,
        )

    @staticmethod
    def _discard(path: Path) -> None:
        if path.exists():
            path.unlink()
            logger.debug("Removed partial download", path=str(path))
