"""
Control API token.

The token is generated once, persisted in the app data directory, and read
by both the API server and local clients.
"""

import secrets
from pathlib import Path
from typing import Optional

from echoplayer.internal import paths
from echoplayer.internal.logging import get_logger

logger = get_logger(__name__)

# 256-bit token -> 64 hex characters
TOKEN_BYTES = 32


def generate_token() -> str:
    token = secrets.token_hex(TOKEN_BYTES)
    logger.info("Generated new runtime token")
    return token


def _token_file(path: Optional[Path]) -> Path:
    return Path(path) if path else paths.get_runtime_token_file()


def save_token(token: str, path: Optional[Path] = None) -> None:
    token_file = _token_file(path)
    token_file.parent.mkdir(parents=True, exist_ok=True)
    token_file.write_text(token, encoding="utf-8")
    logger.info("Runtime token saved", path=str(token_file))


def load_token(path: Optional[Path] = None) -> Optional[str]:
    """
    Returns the persisted token, or None when the file is missing or empty.
    """
    token_file = _token_file(path)
    if not token_file.exists():
        return None

    token = token_file.read_text(encoding="utf-8").strip()
    if not token:
        logger.error("Runtime token file is empty", path=str(token_file))
        return None
    return token


def ensure_token(path: Optional[Path] = None) -> str:
    """
    Load the token, generating and persisting one on first use.
    Only the API server entry point calls this.
    """
    token = load_token(path)
    if token:
        return token

    token = generate_token()
    save_token(token, path)
    return token
