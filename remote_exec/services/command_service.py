"""Per-invocation coordinator: validation, host lookup, hooks, telemetry, streaming.

``run_command`` validates and resolves eagerly, so a bad request or unknown
alias raises ``ConfigError`` at call time, before any hook, telemetry or
transport activity. Iterating the returned sequence performs the run and
yields zero or more ``StreamChunk`` items (only when streaming was requested)
followed by exactly one ``ExecutionResult``, or raises the run's error after
any chunks already produced.
"""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator, Mapping, Optional, Union

from pydantic import ValidationError

from remote_exec.models.execution import (
    ExecutionContext,
    ExecutionOptions,
    ExecutionResult,
    InvocationMetadata,
    RunCommandRequest,
    StreamChunk,
    create_execution_metadata,
)
from remote_exec.models.hosts import HostConfig, HostRegistry, RemoteServerConfig
from remote_exec.services.chunk_queue import ChunkQueue
from remote_exec.services.hooks import ExecutionHookManager
from remote_exec.services.telemetry import TelemetryLogger
from remote_exec.services.transport import ConfigError, ExecutionError, RemoteTransport
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

RunCommandItem = Union[StreamChunk, ExecutionResult]


def _format_validation_error(exc: ValidationError) -> str:
    lines = []
    for issue in exc.errors():
        path = ".".join(str(part) for part in issue["loc"]) or "request"
        lines.append(f"{path}: {issue['msg']}")
    return "\n".join(lines)


def format_result_text(result: ExecutionResult) -> str:
    """One-line human summary, e.g. ``Command succeeded in 12ms``."""
    if result.timed_out:
        status = "timed out"
    elif result.exit_code == 0:
        status = "succeeded"
    else:
        code = "null" if result.exit_code is None else result.exit_code
        status = f"exited with code {code}"
    return f"Command {status} in {result.duration_ms}ms"


async def collect_result(items: AsyncIterator[RunCommandItem]) -> ExecutionResult:
    """Drain *items* and return the terminal result."""
    result: Optional[ExecutionResult] = None
    async for item in items:
        if isinstance(item, ExecutionResult):
            result = item
    if result is None:
        raise ExecutionError("Invocation finished without a result")
    return result


async def _abandon(task: "asyncio.Future[ExecutionResult]") -> None:
    """Cancel an unfinished transport call and wait for its teardown."""
    if not task.done():
        task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        log.debug("command.abandoned_error", error=str(task.exception()))


class CommandService:
    def __init__(
        self,
        config: RemoteServerConfig,
        transport: RemoteTransport,
        hooks: Optional[ExecutionHookManager] = None,
        telemetry: Optional[TelemetryLogger] = None,
    ) -> None:
        self._registry = HostRegistry.from_config(config)
        self._transport = transport
        self._hooks = hooks or ExecutionHookManager()
        self._telemetry = telemetry or TelemetryLogger()

    # ── registry ──────────────────────────────────────────────────────

    def update_config(self, config: RemoteServerConfig) -> None:
        """Swap in a new host snapshot; in-flight runs keep their host."""
        self._registry = HostRegistry.from_config(config)
        log.info("registry.updated", hosts=len(self._registry))

    def hosts(self) -> list[str]:
        return self._registry.aliases

    def _find_host(self, alias: str) -> HostConfig:
        host = self._registry.get(alias)
        if host is None:
            raise ConfigError(f"Host alias '{alias}' not found in configuration")
        return host

    # ── public ────────────────────────────────────────────────────────

    def run_command(
        self, request: Union[RunCommandRequest, Mapping[str, Any]],
    ) -> AsyncIterator[RunCommandItem]:
        try:
            req = RunCommandRequest.model_validate(request)
        except ValidationError as exc:
            raise ConfigError(
                "Invalid runCommand request:\n" + _format_validation_error(exc),
            ) from exc

        host = self._find_host(req.host_alias)
        context = ExecutionContext(
            host=host,
            command=req.command,
            options=ExecutionOptions(
                timeout_ms=req.timeout_ms,
                stream=bool(req.stream),
                cwd=req.cwd,
                env=req.env,
            ),
        )
        return self._execute(context)

    async def run_to_completion(
        self, request: Union[RunCommandRequest, Mapping[str, Any]],
    ) -> ExecutionResult:
        """Drain ``run_command`` and return only the final result."""
        return await collect_result(self.run_command(request))

    # ── invocation ────────────────────────────────────────────────────

    async def _execute(self, context: ExecutionContext) -> AsyncIterator[RunCommandItem]:
        metadata = create_execution_metadata()
        queue: Optional[ChunkQueue[StreamChunk]] = (
            ChunkQueue() if context.options.stream else None
        )

        task: Optional[asyncio.Future[ExecutionResult]] = None

        def sink(chunk: StreamChunk) -> None:
            self._telemetry.log_command_chunk(context, metadata, chunk)
            if queue is not None:
                queue.push(chunk)

        try:
            await self._hooks.run_before(context, metadata)
            self._telemetry.log_command_start(context, metadata)

            task = asyncio.ensure_future(self._transport.execute(context, sink))
            if queue is not None:
                task.add_done_callback(lambda _: queue.close())
                async for chunk in queue:
                    yield chunk

            result = await task
        except Exception as exc:
            if queue is not None:
                queue.close()
            await self._fail(context, metadata, exc)
            raise
        except (GeneratorExit, asyncio.CancelledError):
            # Consumer went away or the caller was cancelled mid-run.
            if queue is not None:
                queue.close()
            if task is not None:
                await _abandon(task)
            await self._fail(
                context,
                metadata,
                ExecutionError(
                    f"Invocation abandoned before completion (host: {context.host.alias})",
                ),
            )
            raise

        await self._hooks.run_after(context, metadata, result)
        self._telemetry.log_command_result(context, metadata, result)
        yield result

    async def _fail(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        error: BaseException,
    ) -> None:
        await self._hooks.run_error(context, metadata, error)
        self._telemetry.log_command_error(context, metadata, error)
