"""Per-invocation data structures: request, context, chunks and results."""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Annotated, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from remote_exec.models.hosts import HostConfig

ChunkType = Literal["stdout", "stderr"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RunCommandRequest(_CamelModel):
    """Inbound "run a command" request, validated with strict types."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        strict=True,
        extra="ignore",
    )

    host_alias: Annotated[str, Field(min_length=1)]
    command: Annotated[str, Field(min_length=1)]
    timeout_ms: Optional[Annotated[int, Field(gt=0)]] = None
    stream: Optional[bool] = None
    cwd: Optional[str] = None
    env: Optional[dict[str, str]] = None


class ExecutionOptions(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True,
    )

    timeout_ms: Optional[int] = None
    stream: bool = False
    cwd: Optional[str] = None
    env: Optional[Mapping[str, str]] = None

    @field_validator("env")
    @classmethod
    def _freeze_env(cls, value: Optional[Mapping[str, str]]) -> Optional[Mapping[str, str]]:
        # Read-only copy, shared with hooks and the transport
        return None if value is None else MappingProxyType(dict(value))


class ExecutionContext(BaseModel):
    """Read-only view of one invocation handed to transport, hooks and telemetry."""

    model_config = ConfigDict(frozen=True)

    host: HostConfig
    command: str
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)


class InvocationMetadata(BaseModel):
    """Correlation data shared by every hook and telemetry call of one run."""

    model_config = ConfigDict(frozen=True)

    invocation_id: str
    started_at: datetime


def create_execution_metadata() -> InvocationMetadata:
    return InvocationMetadata(
        invocation_id=secrets.token_urlsafe(9),
        started_at=utcnow(),
    )


class StreamChunk(_CamelModel):
    type: ChunkType
    data: str
    received_at: datetime = Field(default_factory=utcnow)


class ExecutionResult(_CamelModel):
    """Terminal item of every invocation. ``exit_code`` is None on timeout."""

    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False
    duration_ms: int = 0
