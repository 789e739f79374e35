"""Transport contract and the error taxonomy shared by every transport."""

from __future__ import annotations

from typing import Callable, ClassVar, Optional, Protocol

from remote_exec.models.execution import (
    ExecutionContext,
    ExecutionResult,
    StreamChunk,
)

ChunkSink = Callable[[StreamChunk], None]


class RemoteExecError(Exception):
    """Base class; ``code`` names the failure kind for callers and the API."""

    code: ClassVar[str] = "execution"


class ConfigError(RemoteExecError):
    """Bad request shape, unknown alias, unusable known_hosts store."""

    code = "config"


class AuthError(RemoteExecError):
    """Credential resolution failed or the server rejected them."""

    code = "auth"


class HostConnectionError(RemoteExecError):
    """Network, handshake or host key failure."""

    code = "connection"


class ExecutionError(RemoteExecError):
    """Channel-level failure once connected. Timeouts are not errors."""

    code = "execution"


def enrich_error(
    error: BaseException,
    error_cls: type[RemoteExecError],
    host_alias: str,
) -> RemoteExecError:
    """Wrap *error* in *error_cls*, keeping already-classified errors as-is."""
    if isinstance(error, RemoteExecError):
        return error
    message = str(error) or error.__class__.__name__
    wrapped = error_cls(f"{message} (host: {host_alias})")
    wrapped.__cause__ = error
    return wrapped


class RemoteTransport(Protocol):
    async def execute(
        self,
        context: ExecutionContext,
        sink: Optional[ChunkSink] = None,
    ) -> ExecutionResult:
        """Run ``context.command`` once, streaming fragments into *sink*."""
        ...

    async def close(self) -> None:
        ...
