"""
Control API tests: authentication, media server control and binary jobs,
served over fake collaborators.
"""
import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from echoplayer.adapters.http.client import MediaServerHealthProbe, RuntimeClient
from echoplayer.adapters.http.fastapi_server import create_app
from echoplayer.adapters.storage_fs import FileSystemArtifactStore
from echoplayer.kernel.catalog import BinaryCatalog
from echoplayer.runtime.acquisition import BinaryAcquisitionManager
from echoplayer.runtime.bootstrap import EnvironmentBootstrap
from echoplayer.runtime.mirror import MirrorSelector
from echoplayer.runtime.services import MEDIA_TOOLS, TOOLCHAIN_TOOLS, Services
from tests.fakes import FakeExtractor, FakeRunner, FixedPyPI, StaticRegion

TOKEN = "test-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


class StallingDownloader:
    """Blocks until its task is cancelled."""

    async def download(self, url, destination, *, user_agent, expected_size=0, token=None, on_progress=None):
        while not token.cancelled:
            await asyncio.sleep(0.01)
        token.raise_if_cancelled()


# --- Fixtures ---

@pytest.fixture
def services(tmp_path, supervisor_factory):
    catalog = BinaryCatalog()
    region = StaticRegion("US")
    selector = MirrorSelector(catalog, region)
    store = FileSystemArtifactStore(tmp_path / "binaries")

    media_binaries = BinaryAcquisitionManager(
        MEDIA_TOOLS, selector, downloader=StallingDownloader(), extractor=FakeExtractor(), store=store
    )
    toolchain = BinaryAcquisitionManager(
        TOOLCHAIN_TOOLS, selector, downloader=StallingDownloader(), extractor=FakeExtractor(), store=store
    )
    bootstrap = EnvironmentBootstrap(
        toolchain, tmp_path / "media-server", runner=FakeRunner(), pypi=FixedPyPI(), which=lambda name: None
    )
    return Services(
        catalog=catalog,
        region=region,
        selector=selector,
        media_binaries=media_binaries,
        toolchain=toolchain,
        bootstrap=bootstrap,
        supervisor=supervisor_factory(),
    )


@pytest.fixture
def client(services):
    with TestClient(create_app(services, TOKEN)) as client:
        yield client


def poll(fn, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        result = fn()
        if result:
            return result
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


# --- Authentication ---

def test_missing_token_is_rejected(client):
    assert client.get("/api/v1/health").status_code in (401, 403)


def test_wrong_token_is_rejected(client):
    response = client.get("/api/v1/health", headers={"Authorization": "Bearer nope"})
    assert response.status_code == 401
    assert response.json()["detail"] == "invalid_token"


def test_health(client):
    response = client.get("/api/v1/health", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


# --- Media server ---

def test_media_server_lifecycle(client):
    info = client.get("/api/v1/media-server", headers=AUTH).json()
    assert info["status"] == "stopped"
    assert info["port"] is None

    started = client.post("/api/v1/media-server/start", headers=AUTH, json={"hls_time": 4}).json()
    assert started["ok"] is True
    assert started["status"] == "running"
    assert started["port"] == 9100
    assert started["config"]["hls_time"] == 4

    again = client.post("/api/v1/media-server/start", headers=AUTH).json()
    assert again["ok"] is False

    stopped = client.post("/api/v1/media-server/stop", headers=AUTH).json()
    assert stopped["ok"] is True
    assert stopped["status"] == "stopped"


def test_media_server_restart(client):
    client.post("/api/v1/media-server/start", headers=AUTH)
    restarted = client.post("/api/v1/media-server/restart", headers=AUTH).json()
    assert restarted["ok"] is True
    assert restarted["status"] == "running"


# --- Binaries ---

def test_binaries_listing(client):
    response = client.get("/api/v1/binaries", headers=AUTH)
    items = {item["tool"]: item for item in response.json()["binaries"]}

    assert set(items) == {"ffmpeg", "ffprobe", "uv"}
    assert all(not item["installed"] and item["path"] is None for item in items.values())


def test_unknown_tool(client):
    response = client.post("/api/v1/binaries/vlc/install", headers=AUTH)
    assert response.status_code == 404
    assert response.json()["detail"] == "unknown_tool"


def test_unknown_platform_is_rejected(client):
    response = client.post("/api/v1/binaries/ffmpeg/install", headers=AUTH, json={"platform": "solaris"})
    assert response.status_code == 400
    assert response.json()["detail"] == "unsupported_platform"


@pytest.mark.parametrize("method, path", [
    ("get", "/api/v1/binaries/ffmpeg/progress?arch=mips"),
    ("delete", "/api/v1/binaries/ffprobe?platform=solaris"),
])
def test_unknown_target_in_query_is_rejected(client, method, path):
    response = client.request(method.upper(), path, headers=AUTH)
    assert response.status_code == 400
    assert response.json()["detail"] == "unsupported_platform"


def test_cancel_with_unknown_arch_is_rejected(client):
    response = client.post("/api/v1/binaries/uv/cancel", headers=AUTH, json={"arch": "mips"})
    assert response.status_code == 400


def test_explicit_target_is_accepted(client):
    response = client.get("/api/v1/binaries/ffmpeg/progress?platform=darwin&arch=arm64", headers=AUTH)
    assert response.status_code == 200
    assert response.json() == {"active": False, "installed": False}


def test_install_progress_and_cancel(client):
    response = client.post("/api/v1/binaries/ffmpeg/install", headers=AUTH)
    assert response.status_code == 202
    assert response.json() == {"accepted": True, "status": "downloading"}

    def progress_when(active):
        body = client.get("/api/v1/binaries/ffmpeg/progress", headers=AUTH).json()
        return body if body["active"] is active else None

    progress = poll(lambda: progress_when(True))
    assert progress["active"] is True
    assert progress["status"] == "downloading"

    assert client.post("/api/v1/binaries/ffmpeg/install", headers=AUTH).status_code == 409
    assert client.delete("/api/v1/binaries/ffmpeg", headers=AUTH).json() == {"removed": False}

    assert client.post("/api/v1/binaries/ffmpeg/cancel", headers=AUTH).json() == {"cancelled": True}
    idle = poll(lambda: progress_when(False))
    assert idle["installed"] is False


def test_cancel_without_job(client):
    assert client.post("/api/v1/binaries/ffprobe/cancel", headers=AUTH).json() == {"cancelled": False}


# --- Environment ---

def test_environment_report(client):
    body = client.get("/api/v1/environment", headers=AUTH).json()

    assert body["toolchain"]["exists"] is False
    assert body["venv"]["exists"] is False
    assert body["bootstrap"] is None


def test_environment_initialize_is_accepted(client):
    response = client.post("/api/v1/environment/initialize", headers=AUTH, json={"python_version": "3.11"})
    assert response.status_code == 202

    def stage():
        report = client.get("/api/v1/environment", headers=AUTH).json()["bootstrap"]
        return report and report["stage"]

    assert poll(lambda: stage() == "toolchain")
    # the toolchain download stalls until cancelled
    assert poll(lambda: client.post("/api/v1/binaries/uv/cancel", headers=AUTH).json()["cancelled"])
    assert poll(lambda: stage() == "error")


# --- Clients ---

@pytest.mark.asyncio
async def test_runtime_client_sends_token():
    seen = []

    def handler(request):
        seen.append(request.headers.get("authorization"))
        return httpx.Response(200, json={"status": "ok"})

    client = RuntimeClient(token="abc", transport=httpx.MockTransport(handler))

    assert await client.health() == {"status": "ok"}
    assert seen == ["Bearer abc"]


@pytest.mark.asyncio
async def test_runtime_client_port_events():
    def handler(request):
        assert request.url.path == "/api/v1/media-server/events"
        return httpx.Response(200, content=b"data: 8765\n\n: keep-alive\n\ndata: null\n\n")

    client = RuntimeClient(token="abc", transport=httpx.MockTransport(handler))

    assert [port async for port in client.port_events()] == [8765, None]


@pytest.mark.asyncio
async def test_health_probe_accepts_any_2xx():
    statuses = iter([204, 503])

    def handler(request):
        assert request.url.path == "/api/v1/health"
        return httpx.Response(next(statuses))

    probe = MediaServerHealthProbe(transport=httpx.MockTransport(handler))

    assert await probe.check("127.0.0.1", 8765) is True
    assert await probe.check("127.0.0.1", 8765) is False


@pytest.mark.asyncio
async def test_health_probe_connection_refused():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    probe = MediaServerHealthProbe(transport=httpx.MockTransport(handler))
    assert await probe.check("127.0.0.1", 8765) is False
