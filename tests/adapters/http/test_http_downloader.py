"""
Download behaviour against an in-process HTTP transport.
"""
import httpx
import pytest

from echoplayer.adapters.http.downloader import HttpDownloader, SpeedMeter
from echoplayer.kernel.contracts import CancellationToken, DownloadStatus
from echoplayer.kernel.errors import (
    DownloadCancelledError,
    HttpStatusError,
    NetworkError,
    TooManyRedirectsError,
)

PAYLOAD = b"0123456789abcdef" * 4
UA = "EchoPlayer-FFmpeg-Downloader/2.0"


# --- Fixtures ---

@pytest.fixture
def destination(tmp_path):
    return tmp_path / "downloads" / "archive.tar.gz"


def make_downloader(handler, **kwargs):
    return HttpDownloader(transport=httpx.MockTransport(handler), **kwargs)


# --- Redirects ---

@pytest.mark.asyncio
async def test_follows_absolute_and_relative_redirects(destination):
    seen = []

    def handler(request):
        seen.append((str(request.url), request.headers["user-agent"]))
        if request.url.path == "/a":
            return httpx.Response(302, headers={"Location": "/b"})
        if request.url.path == "/b":
            return httpx.Response(301, headers={"Location": "https://cdn.example.com/file"})
        return httpx.Response(200, content=PAYLOAD)

    written = await make_downloader(handler).download(
        "https://example.com/a", destination, user_agent=UA
    )

    assert written == len(PAYLOAD)
    assert destination.read_bytes() == PAYLOAD
    assert [url for url, _ in seen] == [
        "https://example.com/a",
        "https://example.com/b",
        "https://cdn.example.com/file",
    ]
    assert all(agent == UA for _, agent in seen)


@pytest.mark.asyncio
async def test_five_redirects_are_allowed(destination):
    def handler(request):
        hop = int(request.url.path.strip("/r"))
        if hop < 5:
            return httpx.Response(302, headers={"Location": f"/r{hop + 1}"})
        return httpx.Response(200, content=PAYLOAD)

    await make_downloader(handler).download("https://example.com/r0", destination, user_agent=UA)
    assert destination.exists()


@pytest.mark.asyncio
async def test_sixth_redirect_fails(destination):
    requests = []

    def handler(request):
        requests.append(request)
        hop = int(request.url.path.strip("/r"))
        return httpx.Response(302, headers={"Location": f"/r{hop + 1}"})

    with pytest.raises(TooManyRedirectsError):
        await make_downloader(handler).download("https://example.com/r0", destination, user_agent=UA)

    assert len(requests) == 6
    assert not destination.exists()


@pytest.mark.asyncio
async def test_malformed_redirect_location_is_network_error(destination):
    def handler(request):
        return httpx.Response(302, headers={"Location": "http://[invalid/x"})

    with pytest.raises(NetworkError) as excinfo:
        await make_downloader(handler).download("https://example.com/a", destination, user_agent=UA)

    assert excinfo.value.code == "network_failure"
    assert not destination.exists()


@pytest.mark.asyncio
async def test_other_redirect_statuses_are_errors(destination):
    def handler(request):
        return httpx.Response(307, headers={"Location": "/elsewhere"})

    with pytest.raises(HttpStatusError) as excinfo:
        await make_downloader(handler).download("https://example.com/a", destination, user_agent=UA)
    assert excinfo.value.status_code == 307


# --- Failures ---

@pytest.mark.asyncio
async def test_http_error_status(destination):
    def handler(request):
        return httpx.Response(404)

    with pytest.raises(HttpStatusError) as excinfo:
        await make_downloader(handler).download("https://example.com/missing", destination, user_agent=UA)

    assert excinfo.value.status_code == 404
    assert excinfo.value.code == "http_status"
    assert not destination.exists()


@pytest.mark.asyncio
async def test_transport_error_becomes_network_error(destination):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(NetworkError):
        await make_downloader(handler).download("https://example.com/a", destination, user_agent=UA)


@pytest.mark.asyncio
async def test_cancel_mid_stream_removes_partial_file(destination):
    def handler(request):
        return httpx.Response(200, content=PAYLOAD)

    token = CancellationToken()
    downloader = make_downloader(handler, chunk_size=8, progress_interval=0)

    with pytest.raises(DownloadCancelledError):
        await downloader.download(
            "https://example.com/a",
            destination,
            user_agent=UA,
            token=token,
            on_progress=lambda progress: token.cancel(),
        )

    assert not destination.exists()


@pytest.mark.asyncio
async def test_cancelled_before_start(destination):
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=PAYLOAD)

    token = CancellationToken()
    token.cancel()

    with pytest.raises(DownloadCancelledError):
        await make_downloader(handler).download("https://example.com/a", destination, user_agent=UA, token=token)
    assert calls == []


# --- Progress ---

@pytest.mark.asyncio
async def test_progress_is_throttled(destination):
    def handler(request):
        return httpx.Response(200, content=PAYLOAD)

    updates = []
    downloader = make_downloader(handler, chunk_size=8, progress_interval=3600)

    await downloader.download("https://example.com/a", destination, user_agent=UA, on_progress=updates.append)

    # only the closing report
    assert len(updates) == 1
    final = updates[0]
    assert final.percent == 100.0
    assert final.downloaded == final.total == len(PAYLOAD)
    assert final.status == DownloadStatus.DOWNLOADING


@pytest.mark.asyncio
async def test_progress_uses_expected_size_without_content_length(destination):
    async def body():
        yield PAYLOAD[:32]
        yield PAYLOAD[32:]

    def handler(request):
        return httpx.Response(200, content=body())

    ticks = iter(range(1000))
    updates = []
    downloader = make_downloader(handler, chunk_size=32, progress_interval=1, clock=lambda: next(ticks))

    await downloader.download(
        "https://example.com/a",
        destination,
        user_agent=UA,
        expected_size=128,
        on_progress=updates.append,
    )

    assert updates[0].total == 128
    assert 0 < updates[0].percent <= 50
    assert updates[-1].downloaded == len(PAYLOAD)
    assert all(u.percent <= 100 for u in updates)


# --- Speed ---

def test_speed_meter_sliding_window():
    ticks = iter([0.0, 0.5, 1.0, 2.0])
    meter = SpeedMeter(window=1.0, clock=lambda: next(ticks))

    assert meter.update(0) == 0.0
    assert meter.update(100) == pytest.approx(200.0)
    assert meter.update(300) == pytest.approx(300.0)
    assert meter.update(600) == pytest.approx(300.0)
