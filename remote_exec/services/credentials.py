"""Turn a host's declared auth strategy into credential material.

Resolution runs on every connection attempt: key files are re-read, the
agent socket is re-discovered and credential commands are re-executed.
Nothing is cached between invocations.
"""

from __future__ import annotations

import asyncio
import os
import re
from dataclasses import dataclass, field
from typing import Optional, Union, assert_never

from remote_exec.config import Settings, settings
from remote_exec.models.hosts import (
    CredentialCommandAuth,
    HostConfig,
    SshAgentAuth,
    SshKeyAuth,
)
from remote_exec.services.transport import AuthError
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

_ENV_UNSAFE = re.compile(r"[^A-Z0-9_]")


@dataclass(frozen=True)
class KeyFileCredentials:
    key_path: str
    key_data: str = field(repr=False)
    # None when not requested or not provided; an encrypted key then fails
    # to load at connection time.
    passphrase: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class AgentCredentials:
    socket_path: str


@dataclass(frozen=True)
class PasswordCredentials:
    password: str = field(repr=False)


Credentials = Union[KeyFileCredentials, AgentCredentials, PasswordCredentials]


def passphrase_env_var(alias: str, cfg: Settings | None = None) -> str:
    """Name of the environment secret holding *alias*'s key passphrase."""
    cfg = cfg or settings
    return cfg.passphrase_env_prefix + _ENV_UNSAFE.sub("_", alias.upper())


async def resolve_credentials(
    host: HostConfig,
    cfg: Settings | None = None,
) -> Credentials:
    cfg = cfg or settings
    auth = host.auth

    if isinstance(auth, SshKeyAuth):
        return _resolve_key_file(host, auth, cfg)
    if isinstance(auth, SshAgentAuth):
        return _resolve_agent(host, auth)
    if isinstance(auth, CredentialCommandAuth):
        return await _resolve_credential_command(host, auth, cfg)
    assert_never(auth)


def _resolve_key_file(
    host: HostConfig, auth: SshKeyAuth, cfg: Settings,
) -> KeyFileCredentials:
    key_path = os.path.expanduser(auth.private_key_path)
    try:
        with open(key_path, encoding="utf-8") as fh:
            key_data = fh.read()
    except (OSError, UnicodeDecodeError) as exc:
        raise AuthError(
            f"Cannot read private key {key_path} for {host.alias}: {exc}",
        ) from exc

    passphrase = None
    if auth.passphrase_prompt:
        passphrase = os.environ.get(passphrase_env_var(host.alias, cfg))
        if passphrase is None:
            log.warning(
                "auth.passphrase_missing",
                alias=host.alias,
                env_var=passphrase_env_var(host.alias, cfg),
            )
    return KeyFileCredentials(
        key_path=key_path, key_data=key_data, passphrase=passphrase,
    )


def _resolve_agent(host: HostConfig, auth: SshAgentAuth) -> AgentCredentials:
    socket_path = auth.agent_socket_path or os.environ.get("SSH_AUTH_SOCK")
    if not socket_path:
        raise AuthError(
            f"SSH agent authentication requested for {host.alias} "
            "but no agent socket is available",
        )
    return AgentCredentials(socket_path=os.path.expanduser(socket_path))


def _kill(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


async def _read_bounded(
    stream: asyncio.StreamReader,
    limit: int,
    proc: asyncio.subprocess.Process,
) -> bytes:
    """Read until EOF; kill *proc* once more than *limit* bytes arrive."""
    buf = bytearray()
    while len(buf) <= limit:
        block = await stream.read(limit + 1 - len(buf))
        if not block:
            return bytes(buf)
        buf += block
    _kill(proc)
    return bytes(buf)


async def _resolve_credential_command(
    host: HostConfig, auth: CredentialCommandAuth, cfg: Settings,
) -> PasswordCredentials:
    limit = cfg.credential_command_max_bytes
    log.debug("auth.credential_command", alias=host.alias)
    try:
        proc = await asyncio.create_subprocess_shell(
            auth.credential_command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise AuthError(
            f"Credential command for {host.alias} could not start: {exc}",
        ) from exc

    try:
        out, err = await asyncio.gather(
            _read_bounded(proc.stdout, limit, proc),
            _read_bounded(proc.stderr, limit, proc),
        )
    except asyncio.CancelledError:
        _kill(proc)
        raise
    if len(out) > limit or len(err) > limit:
        await proc.wait()
        raise AuthError(
            f"Credential command for {host.alias} exceeded {limit} bytes of output",
        )

    rc = await proc.wait()
    if rc != 0:
        detail = err.decode(errors="replace").strip()
        raise AuthError(
            f"Credential command for {host.alias} failed rc={rc}: {detail}",
        )

    password = out.decode(errors="replace").strip()
    if not password:
        raise AuthError(f"Credential command for {host.alias} returned empty output")
    return PasswordCredentials(password=password)
