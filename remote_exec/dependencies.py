"""Request-scoped access to the objects built at startup."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from remote_exec.services.command_service import CommandService


def get_command_service(request: Request) -> CommandService:
    service = getattr(request.app.state, "command_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Command service is not initialised",
        )
    return service
