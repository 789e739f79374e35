"""known_hosts parsing and host key verification.

Verification fails closed: when a host asks for strict checking, a missing
or empty store is a configuration error rather than a silent accept.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from remote_exec.models.hosts import HostConfig
from remote_exec.services.transport import ConfigError
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

HostKeyVerifier = Callable[[bytes], bool]

DEFAULT_KNOWN_HOSTS = Path("~/.ssh/known_hosts")


@dataclass(frozen=True)
class KnownHostEntry:
    hostnames: frozenset[str]
    key: str  # base64


def parse_known_hosts(text: str) -> list[KnownHostEntry]:
    """Parse known_hosts content, skipping lines we cannot match on.

    ``@cert-authority`` / ``@revoked`` markers and hashed (``|1|...``) host
    names are ignored, as are lines without a key field.
    """
    entries: list[KnownHostEntry] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if stripped.startswith(("@", "|")):
            continue
        parts = stripped.split()
        if len(parts) < 3:
            continue
        host_list, _key_type, key = parts[0], parts[1], parts[2]
        names = frozenset(name for name in host_list.split(",") if name)
        if not names or not key:
            continue
        entries.append(KnownHostEntry(hostnames=names, key=key))
    return entries


def resolve_known_hosts_path(host: HostConfig) -> Path:
    if host.known_hosts_path:
        return Path(host.known_hosts_path).expanduser().resolve()
    return DEFAULT_KNOWN_HOSTS.expanduser()


def load_known_hosts(path: Path) -> list[KnownHostEntry]:
    if not path.is_file():
        raise ConfigError(
            f"Known hosts file not found at {path}. "
            "Provide a valid path or disable strictHostKeyChecking.",
        )
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise ConfigError(f"Cannot read known hosts file {path}: {exc}") from exc
    return parse_known_hosts(text)


def host_candidates(host: HostConfig) -> frozenset[str]:
    """Names under which *host* may appear in a known_hosts store."""
    names = {
        host.host,
        f"{host.host}:{host.port}",
        f"[{host.host}]:{host.port}",
        host.alias,
    }
    return frozenset(name for name in names if name)


def build_host_verifier(host: HostConfig) -> Optional[HostKeyVerifier]:
    """Return a predicate over presented key bytes, or None to skip checks."""
    if not host.strict_host_key_checking:
        return None

    path = resolve_known_hosts_path(host)
    entries = load_known_hosts(path)
    if not entries:
        raise ConfigError(
            f"No entries found in known hosts file {path}; "
            f"cannot verify {host.alias}.",
        )

    candidates = host_candidates(host)
    trusted = [entry for entry in entries if entry.hostnames & candidates]
    log.debug(
        "known_hosts.loaded",
        alias=host.alias,
        path=str(path),
        entries=len(entries),
        matching=len(trusted),
    )

    def verify(key: bytes) -> bool:
        presented = base64.b64encode(key).decode("ascii")
        return any(entry.key == presented for entry in trusted)

    return verify
