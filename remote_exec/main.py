"""FastAPI application entry-point."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from remote_exec import __version__
from remote_exec.config import settings
from remote_exec.models.responses import ErrorResponse
from remote_exec.routers import commands, health
from remote_exec.services.command_service import CommandService
from remote_exec.services.hooks import ExecutionHookManager
from remote_exec.services.registry import ConfigWatcher, load_config
from remote_exec.services.ssh_transport import SSHTransport
from remote_exec.services.telemetry import TelemetryLogger
from remote_exec.services.transport import RemoteExecError
from remote_exec.utils.logging import get_logger, setup_logging

log = get_logger(__name__)

_STATUS_BY_CODE = {
    "config": 400,
    "auth": 502,
    "connection": 502,
    "execution": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown hooks."""
    setup_logging(settings.log_level)
    config = load_config(allow_missing=settings.config_allow_missing)
    telemetry = TelemetryLogger(
        destination=settings.log_path or None, level=settings.log_level,
    )
    transport = SSHTransport(settings)
    service = CommandService(
        config=config,
        transport=transport,
        hooks=ExecutionHookManager(timeout=settings.hook_timeout_seconds),
        telemetry=telemetry,
    )
    app.state.command_service = service

    watcher = ConfigWatcher(
        service.update_config,
        allow_missing=settings.config_allow_missing,
        on_error=lambda exc: log.error("registry.invalid", error=str(exc)),
    )
    watcher.start()
    log.info("app.started", hosts=len(config.hosts), config=str(watcher.path))
    yield
    # Shutdown: stop watching and release SSH worker threads
    await watcher.close()
    await transport.close()
    telemetry.close()


app = FastAPI(
    title="Remote Exec API",
    description="Run commands on registered hosts over SSH",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RemoteExecError)
async def remote_exec_error_handler(request: Request, exc: RemoteExecError) -> JSONResponse:
    return JSONResponse(
        status_code=_STATUS_BY_CODE.get(exc.code, 500),
        content=ErrorResponse(detail=str(exc), code=exc.code).model_dump(),
    )


app.include_router(health.router)
app.include_router(commands.router)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "remote_exec.main:app",
        host=settings.listen_host,
        port=settings.listen_port,
    )
