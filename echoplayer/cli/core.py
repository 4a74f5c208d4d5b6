"""
Core, reusable logic for CLI commands, decoupled from Typer.
"""

import asyncio
from typing import Optional

from echoplayer.adapters.http.client import RuntimeClient
from echoplayer.internal.logging import get_logger
from echoplayer.runtime.services import Services, build_services

logger = get_logger(__name__)

_services: Optional[Services] = None

# ---------------------------------------------------------------------
# Async helper
# ---------------------------------------------------------------------

def run_async(coro):
    """
    Run an async coroutine from sync command code.
    """
    return asyncio.run(coro)

# ---------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------

def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def reset_services() -> None:
    global _services
    _services = None

# ---------------------------------------------------------------------
# Control API reachability
# ---------------------------------------------------------------------

def is_runtime_active(client: Optional[RuntimeClient] = None) -> bool:
    """
    True when the control API answers its health endpoint.
    """
    client = client or RuntimeClient()
    try:
        health = run_async(client.health())
        return isinstance(health, dict) and health.get("status") == "ok"
    except Exception as e:
        logger.debug("Control API not reachable", base_url=client.base_url, error=str(e))
        return False


def runtime_call(method: str) -> Optional[dict]:
    """
    Call a RuntimeClient method by name, returning None when the API is unreachable.
    """
    client = RuntimeClient()
    try:
        return run_async(getattr(client, method)())
    except Exception as e:
        logger.warning("Control API call failed", method=method, error=str(e))
        return None
