"""Health-check and registry listing endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from remote_exec import __version__
from remote_exec.auth import require_api_key
from remote_exec.dependencies import get_command_service
from remote_exec.models.responses import HealthResponse, HostListResponse
from remote_exec.services.command_service import CommandService

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def service_health(request: Request) -> HealthResponse:
    """Basic liveness check (no auth required)."""
    service = getattr(request.app.state, "command_service", None)
    hosts = len(service.hosts()) if service is not None else 0
    return HealthResponse(status="ok", version=__version__, hosts=hosts)


@router.get(
    "/hosts",
    response_model=HostListResponse,
    dependencies=[Depends(require_api_key)],
)
async def list_hosts(
    service: CommandService = Depends(get_command_service),
) -> HostListResponse:
    """Aliases in the current registry snapshot."""
    return HostListResponse(hosts=service.hosts())
