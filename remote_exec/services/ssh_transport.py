"""SSH transport: one connection and one exec channel per invocation.

paramiko is blocking, so connect/auth/read run inside a thread pool and the
asyncio event loop is never blocked. Output fragments are handed back to the
loop with ``call_soon_threadsafe`` in the order they were read, and all of
them are delivered before ``execute`` returns.
"""

from __future__ import annotations

import asyncio
import codecs
import io
import shlex
import socket
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional, assert_never

import paramiko
from paramiko.agent import AgentSSH

from remote_exec.config import Settings, settings
from remote_exec.models.execution import (
    ChunkType,
    ExecutionContext,
    ExecutionResult,
    StreamChunk,
)
from remote_exec.models.hosts import HostConfig
from remote_exec.services.credentials import (
    AgentCredentials,
    Credentials,
    KeyFileCredentials,
    PasswordCredentials,
    resolve_credentials,
)
from remote_exec.services.known_hosts import HostKeyVerifier, build_host_verifier
from remote_exec.services.transport import (
    AuthError,
    ChunkSink,
    ConfigError,
    ExecutionError,
    HostConnectionError,
    enrich_error,
)
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

_RECV_BYTES = 32768
_POLL_INTERVAL = 0.01

# Tried in order when loading a private key of unknown type
_KEY_CLASSES: tuple[type[paramiko.PKey], ...] = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


class HostKeyRejected(paramiko.SSHException):
    pass


@dataclass
class _ExecutionState:
    timed_out: bool = False
    stdout: list[str] = field(default_factory=list)
    stderr: list[str] = field(default_factory=list)


# ── command rewriting ─────────────────────────────────────────────────────


def apply_cwd(command: str, cwd: Optional[str]) -> str:
    """Prefix *command* with a ``cd`` into the quoted *cwd*."""
    if not cwd:
        return command
    return f"cd {shlex.quote(cwd)} && {command}"


def apply_shell(command: str, shell: Optional[str]) -> str:
    """Run *command* through the host's configured shell, if any."""
    if not shell:
        return command
    return f"{shell} -c {shlex.quote(command)}"


def build_remote_command(context: ExecutionContext) -> str:
    host = context.host
    command = apply_cwd(context.command, context.options.cwd or host.working_directory)
    return apply_shell(command, host.default_shell)


# ── transport ─────────────────────────────────────────────────────────────


class SSHTransport:
    """Executes one command per call over a fresh paramiko connection."""

    def __init__(self, cfg: Settings | None = None) -> None:
        self._cfg = cfg or settings
        self._executor = ThreadPoolExecutor(
            max_workers=self._cfg.ssh_max_workers, thread_name_prefix="ssh",
        )

    # ── helpers ───────────────────────────────────────────────────────

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, fn, *args)

    # ── public ────────────────────────────────────────────────────────

    async def execute(
        self,
        context: ExecutionContext,
        sink: Optional[ChunkSink] = None,
    ) -> ExecutionResult:
        host = context.host
        options = context.options
        loop = asyncio.get_running_loop()
        start = time.monotonic()

        try:
            verifier = build_host_verifier(host)
        except Exception as exc:
            raise enrich_error(exc, ConfigError, host.alias)

        try:
            credentials = await resolve_credentials(host, self._cfg)
        except Exception as exc:
            raise enrich_error(exc, AuthError, host.alias)

        log.info("ssh.connecting", alias=host.alias, host=host.host, port=host.port)
        pending = self._executor.submit(
            self._connect_sync, host, credentials, verifier,
        )
        try:
            transport = await asyncio.wrap_future(pending)
        except asyncio.CancelledError:
            # The worker thread cannot be interrupted; close whatever it returns.
            pending.add_done_callback(_close_abandoned)
            raise
        except paramiko.AuthenticationException as exc:
            raise enrich_error(exc, AuthError, host.alias)
        except Exception as exc:
            raise enrich_error(exc, HostConnectionError, host.alias)
        log.info("ssh.connected", alias=host.alias)

        channel: Optional[paramiko.Channel] = None
        timer: Optional[asyncio.TimerHandle] = None
        state = _ExecutionState()
        try:
            remote_command = build_remote_command(context)
            try:
                channel = await self._run(
                    self._open_channel_sync, transport, remote_command, options.env,
                )
            except Exception as exc:
                raise enrich_error(exc, ExecutionError, host.alias)

            timeout_ms = options.timeout_ms or self._cfg.default_timeout_ms
            timer = loop.call_later(
                timeout_ms / 1000, _expire, channel, state, host.alias,
            )

            def emit(kind: ChunkType, data: str) -> None:
                # Runs on the event loop, in read order.
                (state.stdout if kind == "stdout" else state.stderr).append(data)
                if sink is not None:
                    sink(StreamChunk(type=kind, data=data))

            def emit_threadsafe(kind: ChunkType, data: str) -> None:
                loop.call_soon_threadsafe(emit, kind, data)

            try:
                exit_code = await self._run(_pump_sync, channel, emit_threadsafe)
            except Exception as exc:
                if state.timed_out:
                    exit_code = None
                else:
                    raise enrich_error(exc, ExecutionError, host.alias)
        finally:
            if timer is not None:
                timer.cancel()
            await self._run(_teardown_sync, channel, transport)

        duration_ms = int((time.monotonic() - start) * 1000)
        if state.timed_out:
            exit_code = None

        return ExecutionResult(
            exit_code=exit_code,
            stdout="".join(state.stdout),
            stderr="".join(state.stderr),
            timed_out=state.timed_out,
            duration_ms=duration_ms,
        )

    async def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ── blocking steps (run in the executor) ──────────────────────────

    def _connect_sync(
        self,
        host: HostConfig,
        credentials: Credentials,
        verifier: Optional[HostKeyVerifier],
    ) -> paramiko.Transport:
        timeout = self._cfg.ready_timeout_seconds
        sock = socket.create_connection((host.host, host.port), timeout=timeout)
        transport = paramiko.Transport(sock)
        try:
            if host.connection and host.connection.keep_alive_interval_ms:
                transport.set_keepalive(
                    max(1, host.connection.keep_alive_interval_ms // 1000),
                )
            transport.start_client(timeout=timeout)

            server_key = transport.get_remote_server_key()
            if verifier is not None and not verifier(server_key.asbytes()):
                raise HostKeyRejected(
                    f"Host key verification failed for {host.alias} "
                    f"({server_key.get_name()} {server_key.get_base64()[:16]}...)",
                )

            _authenticate(transport, host.username, credentials)
        except BaseException:
            transport.close()
            raise
        return transport

    def _open_channel_sync(
        self,
        transport: paramiko.Transport,
        command: str,
        env: Optional[Mapping[str, str]],
    ) -> paramiko.Channel:
        channel = transport.open_session(timeout=self._cfg.ready_timeout_seconds)
        try:
            if env:
                channel.update_environment(env)
            channel.exec_command(command)
        except BaseException:
            channel.close()
            raise
        return channel


# ── module-level sync helpers (executor-friendly) ─────────────────────────


class _SocketAgent(AgentSSH):
    """ssh-agent client bound to an explicit socket path."""

    def __init__(self, socket_path: str) -> None:
        super().__init__()
        conn = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            conn.connect(socket_path)
        except OSError:
            conn.close()
            raise
        self._connect(conn)

    def close(self) -> None:
        self._close()


def load_private_key(key_data: str, passphrase: Optional[str]) -> paramiko.PKey:
    """Parse a private key of any supported type."""
    errors: list[str] = []
    for key_cls in _KEY_CLASSES:
        try:
            return key_cls.from_private_key(io.StringIO(key_data), password=passphrase)
        except paramiko.PasswordRequiredException:
            raise
        except (paramiko.SSHException, ValueError) as exc:
            errors.append(f"{key_cls.__name__}: {exc}")
    raise AuthError("Unsupported or unreadable private key (" + "; ".join(errors) + ")")


def _authenticate(
    transport: paramiko.Transport, username: str, credentials: Credentials,
) -> None:
    if isinstance(credentials, KeyFileCredentials):
        try:
            pkey = load_private_key(credentials.key_data, credentials.passphrase)
        except paramiko.PasswordRequiredException as exc:
            raise AuthError(
                f"Private key {credentials.key_path} is encrypted and no passphrase "
                "was provided",
            ) from exc
        transport.auth_publickey(username, pkey)
    elif isinstance(credentials, AgentCredentials):
        try:
            agent = _SocketAgent(credentials.socket_path)
        except OSError as exc:
            raise AuthError(
                f"Cannot reach SSH agent at {credentials.socket_path}: {exc}",
            ) from exc
        try:
            keys = agent.get_keys()
            if not keys:
                raise AuthError("SSH agent holds no identities")
            for key in keys:
                try:
                    transport.auth_publickey(username, key)
                    return
                except paramiko.AuthenticationException:
                    continue
            raise AuthError("No SSH agent identity was accepted by the server")
        finally:
            agent.close()
    elif isinstance(credentials, PasswordCredentials):
        transport.auth_password(username, credentials.password)
    else:
        assert_never(credentials)


def _close_abandoned(future: "Future[paramiko.Transport]") -> None:
    if future.cancelled() or future.exception() is not None:
        return
    future.result().close()
    log.info("ssh.closed_abandoned")


def _expire(channel: paramiko.Channel, state: _ExecutionState, alias: str) -> None:
    state.timed_out = True
    log.warning("ssh.timeout", alias=alias)
    channel.close()


def _pump_sync(
    channel: paramiko.Channel,
    emit: Callable[[ChunkType, str], None],
) -> Optional[int]:
    """Forward output until the channel is drained or closed.

    Returns the remote exit status, or None when the server sent none.
    """
    decoders = {
        "stdout": codecs.getincrementaldecoder("utf-8")(errors="replace"),
        "stderr": codecs.getincrementaldecoder("utf-8")(errors="replace"),
    }

    def forward(kind: ChunkType, data: bytes, final: bool = False) -> None:
        text = decoders[kind].decode(data, final)
        if text:
            emit(kind, text)

    while True:
        active = False
        if channel.recv_ready():
            data = channel.recv(_RECV_BYTES)
            if data:
                forward("stdout", data)
                active = True
        if channel.recv_stderr_ready():
            data = channel.recv_stderr(_RECV_BYTES)
            if data:
                forward("stderr", data)
                active = True
        if active:
            continue
        if channel.closed:
            break
        if channel.eof_received and not (
            channel.recv_ready() or channel.recv_stderr_ready()
        ):
            break
        time.sleep(_POLL_INTERVAL)

    forward("stdout", b"", final=True)
    forward("stderr", b"", final=True)

    status = channel.recv_exit_status()
    return None if status == -1 else status


def _teardown_sync(
    channel: Optional[paramiko.Channel], transport: paramiko.Transport,
) -> None:
    if channel is not None:
        try:
            channel.close()
        except Exception as exc:
            log.debug("ssh.channel_close_failed", error=str(exc))
    try:
        transport.close()
    except Exception as exc:
        log.debug("ssh.transport_close_failed", error=str(exc))
    log.info("ssh.closed")
