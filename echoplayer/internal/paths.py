import os
import sys
from pathlib import Path
from typing import Optional


# ---------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------

def get_app_data_dir() -> Path:
    """
    Returns the application data directory.

    - ECHOPLAYER_HOME, when set
    - Windows: %APPDATA%\\EchoPlayer
    - macOS: ~/Library/Application Support/EchoPlayer
    - Linux: $XDG_DATA_HOME/echoplayer or ~/.local/share/echoplayer
    """
    override = os.environ.get("ECHOPLAYER_HOME")
    if override:
        path = Path(override)
    elif os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", str(Path.home()))
        path = Path(base) / "EchoPlayer"
    elif sys.platform == "darwin":
        path = Path.home() / "Library" / "Application Support" / "EchoPlayer"
    else:
        base = os.environ.get("XDG_DATA_HOME", str(Path.home() / ".local" / "share"))
        path = Path(base) / "echoplayer"

    path.mkdir(parents=True, exist_ok=True)
    return path


def get_logs_dir() -> Path:
    path = get_app_data_dir() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_log_file() -> Path:
    return get_logs_dir() / "echoplayer.log.json"


# ---------------------------------------------------------------------
# Binaries
# ---------------------------------------------------------------------

def get_binaries_dir() -> Path:
    path = get_app_data_dir() / "binaries"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_tool_dir(tool: str, root: Optional[Path] = None) -> Path:
    """
    binaries/<tool>, holding one directory per installed version.
    """
    return (root or get_binaries_dir()) / tool


def get_install_dir(tool: str, version: str, platform: str, arch: str, root: Optional[Path] = None) -> Path:
    return get_tool_dir(tool, root) / f"{version}-{platform}-{arch}"


def get_temp_dir(tool: str, platform: str, arch: str, root: Optional[Path] = None) -> Path:
    """
    Scratch directory for one (tool, platform, arch) download.
    """
    return get_tool_dir(tool, root) / ".temp" / f"{tool}-{platform}-{arch}"


# ---------------------------------------------------------------------
# Media server
# ---------------------------------------------------------------------

def get_media_server_cache_dir() -> Path:
    return get_app_data_dir() / "MediaServerCache"


def get_media_server_dir() -> Path:
    """
    Locate the media server project.

    ECHOPLAYER_MEDIA_SERVER_DIR wins; then ./backend for source checkouts;
    then the copy bundled into the app data directory.
    """
    override = os.environ.get("ECHOPLAYER_MEDIA_SERVER_DIR")
    if override:
        return Path(override)

    candidates = [
        Path.cwd() / "backend",
        get_app_data_dir() / "media-server",
    ]
    for candidate in candidates:
        if (candidate / "pyproject.toml").exists():
            return candidate
    return candidates[-1]


# ---------------------------------------------------------------------
# Runtime files
# ---------------------------------------------------------------------

def get_runtime_token_file() -> Path:
    return get_app_data_dir() / "runtime.token"


# ---------------------------------------------------------------------
# Debug
# ---------------------------------------------------------------------

if __name__ == "__main__":
    print("App Data Dir:", get_app_data_dir())
    print("Binaries Dir:", get_binaries_dir())
    print("Media Server Dir:", get_media_server_dir())
    print("Media Server Cache:", get_media_server_cache_dir())
    print("Runtime Token File:", get_runtime_token_file())
    print("Log File:", get_log_file())
