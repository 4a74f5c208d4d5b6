"""
Local control API over the runtime services.

Every endpoint requires the bearer token persisted in the app data directory.
Responses carry status values and error identifiers only.
"""
import asyncio
import json
from dataclasses import asdict
from contextlib import asynccontextmanager
from typing import Optional

import typer
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel

from echoplayer.internal.constants import RUNTIME_HOST, RUNTIME_PORT
from echoplayer.internal.logging import get_logger, setup_default_logging
from echoplayer.kernel.contracts import Arch, InstallProgress, Platform, SidecarConfig, Tool
from echoplayer.kernel.errors import UnsupportedPlatformError
from echoplayer.runtime.security import ensure_token
from echoplayer.runtime.services import Services, build_services

logger = get_logger(__name__)
cli_app = typer.Typer()
security = HTTPBearer()


# ---------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------

class BinaryTarget(BaseModel):
    platform: Optional[str] = None
    arch: Optional[str] = None


class EnvironmentRequest(BaseModel):
    python_version: Optional[str] = None


# ---------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------

def create_app(services: Services, token: str) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.shutdown()

    app = FastAPI(title="EchoPlayer runtime", lifespan=lifespan)
    app.state.services = services
    app.state.background = set()
    app.state.bootstrap_progress = None

    async def verify_token(credentials: HTTPAuthorizationCredentials = Depends(security)):
        if credentials.scheme.lower() != "bearer" or credentials.credentials != token:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="invalid_token",
                headers={"WWW-Authenticate": "Bearer"},
            )
        return True

    def spawn(coro) -> None:
        task = asyncio.ensure_future(coro)
        app.state.background.add(task)
        task.add_done_callback(app.state.background.discard)

    def parse_tool(tool: str) -> Tool:
        try:
            return Tool(tool)
        except ValueError:
            raise HTTPException(status_code=404, detail="unknown_tool")

    def parse_target(platform: Optional[str], arch: Optional[str]) -> tuple[Optional[Platform], Optional[Arch]]:
        try:
            return (
                Platform(platform) if platform else None,
                Arch(arch) if arch else None,
            )
        except ValueError:
            raise HTTPException(status_code=400, detail=UnsupportedPlatformError.code)

    auth = [Depends(verify_token)]

    # -----------------------------------------------------------------
    # Health
    # -----------------------------------------------------------------

    @app.get("/api/v1/health", dependencies=auth)
    async def health():
        return {"status": "ok"}

    # -----------------------------------------------------------------
    # Media server
    # -----------------------------------------------------------------

    @app.get("/api/v1/media-server", dependencies=auth)
    async def media_server_info():
        return services.supervisor.get_info()

    @app.post("/api/v1/media-server/start", dependencies=auth)
    async def media_server_start(config: Optional[SidecarConfig] = None):
        ok = await services.supervisor.start(config)
        return {"ok": ok, **services.supervisor.get_info()}

    @app.post("/api/v1/media-server/stop", dependencies=auth)
    async def media_server_stop():
        ok = await services.supervisor.stop()
        return {"ok": ok, **services.supervisor.get_info()}

    @app.post("/api/v1/media-server/restart", dependencies=auth)
    async def media_server_restart(config: Optional[SidecarConfig] = None):
        ok = await services.supervisor.restart(config)
        return {"ok": ok, **services.supervisor.get_info()}

    @app.get("/api/v1/media-server/events", dependencies=auth)
    async def media_server_events(request: Request):
        queue: asyncio.Queue = asyncio.Queue()
        supervisor = services.supervisor
        supervisor.add_port_listener(queue.put_nowait)

        async def stream_events():
            try:
                yield f"data: {json.dumps(supervisor.get_port())}\n\n"
                while not await request.is_disconnected():
                    try:
                        port = await asyncio.wait_for(queue.get(), timeout=15.0)
                    except asyncio.TimeoutError:
                        yield ": keep-alive\n\n"
                        continue
                    yield f"data: {json.dumps(port)}\n\n"
            finally:
                supervisor.remove_port_listener(queue.put_nowait)

        return StreamingResponse(stream_events(), media_type="text/event-stream")

    # -----------------------------------------------------------------
    # Binaries
    # -----------------------------------------------------------------

    @app.get("/api/v1/binaries", dependencies=auth)
    async def binaries():
        items = []
        for tool in Tool:
            manager = services.manager_for(tool)
            items.append({
                "tool": tool.value,
                "installed": manager.is_installed(tool),
                "busy": manager.is_busy(tool),
                "path": str(path) if (path := manager.installed_path(tool)) else None,
            })
        return {"binaries": items}

    @app.post("/api/v1/binaries/{tool}/install", dependencies=auth, status_code=202)
    async def binaries_install(tool: str, target: Optional[BinaryTarget] = None):
        tool_ = parse_tool(tool)
        target = target or BinaryTarget()
        platform_, arch_ = parse_target(target.platform, target.arch)
        manager = services.manager_for(tool_)
        if manager.is_installed(tool_, platform_, arch_):
            return {"accepted": False, "status": "completed"}
        if manager.is_busy(tool_, platform_, arch_):
            raise HTTPException(status_code=409, detail="concurrent_operation_rejected")

        spawn(manager.acquire(tool_, platform_, arch_))
        return {"accepted": True, "status": "downloading"}

    @app.get("/api/v1/binaries/{tool}/progress", dependencies=auth)
    async def binaries_progress(tool: str, platform: Optional[str] = None, arch: Optional[str] = None):
        tool_ = parse_tool(tool)
        platform_, arch_ = parse_target(platform, arch)
        manager = services.manager_for(tool_)
        progress = manager.get_progress(tool_, platform_, arch_)
        if progress is None:
            return {"active": False, "installed": manager.is_installed(tool_, platform_, arch_)}
        return {"active": True, **progress.to_dict()}

    @app.post("/api/v1/binaries/{tool}/cancel", dependencies=auth)
    async def binaries_cancel(tool: str, target: Optional[BinaryTarget] = None):
        tool_ = parse_tool(tool)
        target = target or BinaryTarget()
        platform_, arch_ = parse_target(target.platform, target.arch)
        return {"cancelled": services.manager_for(tool_).cancel(tool_, platform_, arch_)}

    @app.delete("/api/v1/binaries/{tool}", dependencies=auth)
    async def binaries_remove(tool: str, platform: Optional[str] = None, arch: Optional[str] = None):
        tool_ = parse_tool(tool)
        platform_, arch_ = parse_target(platform, arch)
        return {"removed": services.manager_for(tool_).remove(tool_, platform_, arch_)}

    # -----------------------------------------------------------------
    # Environment
    # -----------------------------------------------------------------

    @app.get("/api/v1/environment", dependencies=auth)
    async def environment():
        toolchain = await services.bootstrap.check_toolchain()
        venv = await services.bootstrap.check_venv()
        progress: Optional[InstallProgress] = app.state.bootstrap_progress
        return {
            "toolchain": asdict(toolchain),
            "venv": asdict(venv),
            "bootstrap": None if progress is None else {
                "stage": progress.stage.value,
                "message": progress.message,
                "percent": progress.percent,
                "error": progress.error,
            },
        }

    @app.post("/api/v1/environment/initialize", dependencies=auth, status_code=202)
    async def environment_initialize(body: Optional[EnvironmentRequest] = None):
        def record(progress: InstallProgress) -> None:
            app.state.bootstrap_progress = progress

        body = body or EnvironmentRequest()
        spawn(services.bootstrap.initialize(record, python_version=body.python_version))
        return {"accepted": True}

    return app


# ---------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------

@cli_app.command()
def main(
    host: str = typer.Option(RUNTIME_HOST, help="Host to bind the server to."),
    port: int = typer.Option(RUNTIME_PORT, help="Port to bind the server to."),
):
    """
    Serve the control API until interrupted.
    """
    setup_default_logging()
    token = ensure_token()
    app = create_app(build_services(), token)

    logger.info("Starting API server", host=host, port=port)
    uvicorn.run(app, host=host, port=port, workers=1, reload=False)


if __name__ == "__main__":
    cli_app()
