"""Extension points invoked around every command execution.

Hook policy:

* every call is bounded by ``timeout`` seconds (``None`` disables the bound);
* a failing or slow ``before_execute`` vetoes the run, which is how command
  authorization can be layered on top;
* ``after_execute`` and ``on_error`` failures are logged and never change the
  outcome of the invocation.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

from remote_exec.models.execution import (
    ExecutionContext,
    ExecutionResult,
    InvocationMetadata,
)
from remote_exec.services.transport import ExecutionError
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)


class ExecutionHooks(Protocol):
    async def before_execute(
        self, *, context: ExecutionContext, metadata: InvocationMetadata,
    ) -> None: ...

    async def after_execute(
        self,
        *,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        result: ExecutionResult,
    ) -> None: ...

    async def on_error(
        self,
        *,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        error: BaseException,
    ) -> None: ...


class NoopExecutionHooks:
    async def before_execute(self, **_: object) -> None:
        return None

    async def after_execute(self, **_: object) -> None:
        return None

    async def on_error(self, **_: object) -> None:
        return None


class ExecutionHookManager:
    """Calls the configured hooks with the policy described above."""

    def __init__(
        self,
        hooks: Optional[ExecutionHooks] = None,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self._hooks: ExecutionHooks = hooks or NoopExecutionHooks()
        self._timeout = timeout or None

    async def run_before(
        self, context: ExecutionContext, metadata: InvocationMetadata,
    ) -> None:
        try:
            await asyncio.wait_for(
                self._hooks.before_execute(context=context, metadata=metadata),
                self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise ExecutionError(
                f"before_execute hook timed out after {self._timeout}s "
                f"(host: {context.host.alias})",
            ) from exc

    async def run_after(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        result: ExecutionResult,
    ) -> None:
        await self._isolated(
            "after_execute",
            metadata,
            self._hooks.after_execute(
                context=context, metadata=metadata, result=result,
            ),
        )

    async def run_error(
        self,
        context: ExecutionContext,
        metadata: InvocationMetadata,
        error: BaseException,
    ) -> None:
        await self._isolated(
            "on_error",
            metadata,
            self._hooks.on_error(context=context, metadata=metadata, error=error),
        )

    async def _isolated(self, name: str, metadata: InvocationMetadata, call) -> None:
        try:
            await asyncio.wait_for(call, self._timeout)
        except asyncio.TimeoutError:
            log.warning(
                "hooks.timeout",
                hook=name,
                invocation_id=metadata.invocation_id,
                timeout=self._timeout,
            )
        except Exception as exc:
            log.warning(
                "hooks.failed",
                hook=name,
                invocation_id=metadata.invocation_id,
                error=str(exc),
            )
