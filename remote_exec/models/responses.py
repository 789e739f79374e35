"""API response models."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel

from remote_exec.models.execution import ExecutionResult


class HealthResponse(BaseModel):
    status: str
    version: str
    hosts: int


class HostListResponse(BaseModel):
    hosts: list[str]


class RunCommandResponse(ExecutionResult):
    """Buffered result plus a one-line summary for human readers."""

    summary: str
    is_error: bool


class ErrorDetail(BaseModel):
    code: str
    message: str


class StreamErrorLine(BaseModel):
    """Final NDJSON line when a streamed run fails after headers were sent."""

    error: ErrorDetail


class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None
