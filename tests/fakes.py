"""In-memory stand-ins for the transport, hooks, telemetry and paramiko objects.

Lets the orchestration and streaming logic be exercised without a real host.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Optional

from remote_exec.models.execution import ExecutionContext, ExecutionResult, StreamChunk
from remote_exec.models.hosts import RemoteServerConfig
from remote_exec.services.transport import ChunkSink

# ── canned hosts and results ──────────────────────────────────────────────

STAGING = {
    "alias": "staging",
    "host": "staging.example.com",
    "username": "deploy",
    "auth": {"type": "ssh-agent", "agentSocketPath": "/tmp/agent.sock"},
}


def make_config(*hosts: dict) -> RemoteServerConfig:
    return RemoteServerConfig.model_validate({"hosts": list(hosts)})


HELLO_RESULT = ExecutionResult(
    exit_code=0, stdout="hello\n", stderr="", timed_out=False, duration_ms=10,
)


class FakeTransport:
    """Replays *chunks* into the sink, waits *delay*, then returns *result* or raises *error*."""

    def __init__(
        self,
        chunks: list[tuple[str, str]] | None = None,
        result: ExecutionResult | None = None,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.chunks = chunks or []
        self.result = result or HELLO_RESULT
        self.error = error
        self.delay = delay
        self.calls: list[ExecutionContext] = []
        self.closed = False
        self.cancelled = False

    async def execute(
        self, context: ExecutionContext, sink: Optional[ChunkSink] = None,
    ) -> ExecutionResult:
        self.calls.append(context)
        try:
            for kind, data in self.chunks:
                if sink is not None:
                    sink(StreamChunk(type=kind, data=data))
                await asyncio.sleep(0)
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self) -> None:
        self.closed = True


class RecordingHooks:
    def __init__(self, fail_on: str | None = None, delay: float = 0.0) -> None:
        self.events: list[tuple[str, object]] = []
        self.fail_on = fail_on
        self.delay = delay

    async def _record(self, name: str, payload: object) -> None:
        self.events.append((name, payload))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_on == name:
            raise RuntimeError(f"{name} hook failed")

    async def before_execute(self, *, context, metadata) -> None:
        await self._record("before", metadata.invocation_id)

    async def after_execute(self, *, context, metadata, result) -> None:
        await self._record("after", result)

    async def on_error(self, *, context, metadata, error) -> None:
        await self._record("error", error)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


class RecordingTelemetry:
    def __init__(self) -> None:
        self.events: list[tuple[str, object]] = []

    def log_command_start(self, context, metadata) -> None:
        self.events.append(("start", metadata.invocation_id))

    def log_command_chunk(self, context, metadata, chunk) -> None:
        self.events.append(("chunk", chunk))

    def log_command_result(self, context, metadata, result) -> None:
        self.events.append(("result", result))

    def log_command_error(self, context, metadata, error) -> None:
        self.events.append(("error", error))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]


# ── paramiko stand-ins ────────────────────────────────────────────────────


class FakeChannel:
    """Scripted exec channel read by the real pump loop.

    With ``hang=True`` the remote side never finishes; only ``close()``
    (the timeout path) ends the read loop.
    """

    def __init__(
        self,
        stdout: list[bytes] | None = None,
        stderr: list[bytes] | None = None,
        exit_status: int = 0,
        hang: bool = False,
        recv_error: Exception | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._stdout = list(stdout or [])
        self._stderr = list(stderr or [])
        self._exit_status = exit_status
        self._recv_error = recv_error
        self.closed = False
        self.eof_received = not hang

    def recv_ready(self) -> bool:
        if self._recv_error is not None:
            return True
        with self._lock:
            return bool(self._stdout)

    def recv(self, nbytes: int) -> bytes:
        if self._recv_error is not None:
            raise self._recv_error
        with self._lock:
            return self._stdout.pop(0) if self._stdout else b""

    def recv_stderr_ready(self) -> bool:
        with self._lock:
            return bool(self._stderr)

    def recv_stderr(self, nbytes: int) -> bytes:
        with self._lock:
            return self._stderr.pop(0) if self._stderr else b""

    def recv_exit_status(self) -> int:
        if not self.eof_received:
            return -1
        return self._exit_status

    def close(self) -> None:
        self.closed = True


class FakeParamikoTransport:
    def __init__(self) -> None:
        self.closed = False

    def close(self) -> None:
        self.closed = True
