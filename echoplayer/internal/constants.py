"""
Shared constants for the EchoPlayer runtime host.
"""

APP_NAME = "EchoPlayer"

# ---------------------------------------------------------------------
# Control API
# ---------------------------------------------------------------------

RUNTIME_HOST = "127.0.0.1"
RUNTIME_PORT = 8764

# ---------------------------------------------------------------------
# Media server sidecar
# ---------------------------------------------------------------------

MEDIA_SERVER_HOST = "127.0.0.1"
MEDIA_SERVER_PORT_RANGE = (8765, 8865)
MEDIA_SERVER_APP = "app.main:app"
MEDIA_SERVER_LOG_LEVEL = "info"
HEALTH_PATH = "/api/v1/health"

STARTUP_TIMEOUT = 10.0
STARTUP_POLL_INTERVAL = 0.5
HEALTH_REQUEST_TIMEOUT = 2.0
HEALTH_CHECK_INTERVAL = 30.0
SHUTDOWN_GRACE_PERIOD = 5.0
RESTART_SETTLE_DELAY = 1.0

MAX_RESTART_ATTEMPTS = 3
RESTART_BACKOFF_STEP = 2.0  # seconds per attempt
RESTART_STABLE_AFTER = 60.0  # uptime after which a crash no longer counts toward the cap

# ---------------------------------------------------------------------
# Downloads
# ---------------------------------------------------------------------

HTTP_TIMEOUT = 30.0
MAX_REDIRECTS = 5
PROGRESS_INTERVAL = 1.0
SPEED_WINDOW = 1.0
DOWNLOAD_CHUNK_SIZE = 64 * 1024
USER_AGENT_TEMPLATE = "EchoPlayer-{tool}-Downloader/2.0"

# ---------------------------------------------------------------------
# Region lookup
# ---------------------------------------------------------------------

REGION_LOOKUP_URL = "https://ipinfo.io/json"
REGION_LOOKUP_TIMEOUT = 5.0
REGION_LOOKUP_WAIT = 10.0
REGION_COUNTRIES = frozenset({"cn", "hk", "mo", "tw"})
DEFAULT_COUNTRY = "US"

# ---------------------------------------------------------------------
# Environment bootstrap
# ---------------------------------------------------------------------

TOOLCHAIN_CACHE_TTL = 30.0
PYPI_PROBE_TIMEOUT = 5.0
VENV_DIR_NAME = ".venv"
PROJECT_CONFIG_FILE = "pyproject.toml"
LOCK_FILE = "uv.lock"

# ---------------------------------------------------------------------
# Sidecar environment variables, keyed by SidecarConfig field
# ---------------------------------------------------------------------

SIDECAR_ENV_VARS = {
    "host": "HOST",
    "port": "PORT",
    "debug": "DEBUG",
    "sessions_root": "SESSIONS_ROOT",
    "hls_segment_cache_root": "HLS_SEGMENT_CACHE_ROOT",
    "audio_cache_root": "AUDIO_CACHE_ROOT",
    "hls_time": "HLS_TIME",
    "hls_list_size": "HLS_LIST_SIZE",
    "gop_seconds": "GOP_SECONDS",
    "max_concurrent": "MAX_CONCURRENT",
    "session_ttl": "SESSION_TTL",
    "ffmpeg_path": "FFMPEG_PATH",
    "ffprobe_path": "FFPROBE_PATH",
    "prefer_hw": "PREFER_HW",
    "seek_buffer": "SEEK_BUFFER",
    "session_reuse_tolerance": "SESSION_REUSE_TOLERANCE",
    "cleanup_interval": "CLEANUP_INTERVAL",
    "enable_hybrid_mode": "ENABLE_HYBRID_MODE",
    "audio_preprocessor_concurrent": "AUDIO_PREPROCESSOR_CONCURRENT",
    "audio_track_ttl_hours": "AUDIO_TRACK_TTL_HOURS",
}
