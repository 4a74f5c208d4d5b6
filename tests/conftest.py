import pytest

from echoplayer.kernel.catalog import BinaryCatalog
from echoplayer.kernel.contracts import Arch, ArtifactDescriptor, Platform, Tool
from echoplayer.runtime.mirror import MirrorSelector
from echoplayer.runtime.ports import PortAllocator
from echoplayer.runtime.supervisor import MediaServerSupervisor
from tests.fakes import FakeBootstrap, FakeHealth, FakeLauncher, RecordingSleep, StaticRegion


# --- Fixtures ---

@pytest.fixture(autouse=True)
def app_home(tmp_path, monkeypatch):
    """Point every app data path at a per-test directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("ECHOPLAYER_HOME", str(home))
    monkeypatch.delenv("ECHOPLAYER_MEDIA_SERVER_DIR", raising=False)
    monkeypatch.delenv("ECHOPLAYER_LOG_LEVEL", raising=False)
    return home


@pytest.fixture
def linux_ffmpeg():
    return ArtifactDescriptor(
        tool=Tool.FFMPEG,
        platform=Platform.LINUX,
        arch=Arch.X64,
        version="6.1",
        url="https://github.com/example/ffmpeg/releases/download/6.1/ffmpeg-linux-x64.tar.xz",
        size=1024,
        extract_path="ffmpeg-*-amd64-static/ffmpeg",
    )


@pytest.fixture
def small_catalog(linux_ffmpeg):
    """One GitHub-hosted quadrant, so the region mirror proxies it."""
    return BinaryCatalog(default=[linux_ffmpeg])


@pytest.fixture
def selector_factory(small_catalog):
    def _make(country="US", failed=False, catalog=None, **kwargs):
        return MirrorSelector(catalog or small_catalog, StaticRegion(country, failed), **kwargs)
    return _make


@pytest.fixture
def supervisor_factory(tmp_path):
    """
    Builds a supervisor over fakes. Keyword arguments override the
    collaborators and timings.
    """
    def _make(**overrides):
        options = dict(
            bootstrap=FakeBootstrap(tmp_path / "media-server"),
            launcher=FakeLauncher(),
            health=FakeHealth(),
            ports=PortAllocator((9100, 9100), probe=lambda port, host: True),
            cache_root=tmp_path / "cache",
            base_env={},
            startup_timeout=1.0,
            poll_interval=0.01,
            health_interval=3600,
            grace_period=0.2,
            settle_delay=0,
            sleep=RecordingSleep(),
            which=lambda name: None,
        )
        options.update(overrides)
        return MediaServerSupervisor(**options)
    return _make
