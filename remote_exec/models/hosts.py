"""Host registry models: hosts, their auth strategy and connection tuning."""

from __future__ import annotations

from types import MappingProxyType
from typing import Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, Field(min_length=1)]


class _RegistryModel(BaseModel):
    """Frozen, strict-keyed model accepting snake_case or camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )


# ── authentication descriptors ────────────────────────────────────────────


class SshKeyAuth(_RegistryModel):
    type: Literal["ssh-key"] = "ssh-key"
    private_key_path: NonEmptyStr
    # Look the passphrase up in the per-alias environment secret
    passphrase_prompt: bool = False


class SshAgentAuth(_RegistryModel):
    type: Literal["ssh-agent"] = "ssh-agent"
    # Defaults to SSH_AUTH_SOCK
    agent_socket_path: Optional[NonEmptyStr] = None


class CredentialCommandAuth(_RegistryModel):
    type: Literal["credential-command"] = "credential-command"
    credential_command: NonEmptyStr


AuthConfig = Annotated[
    Union[SshKeyAuth, SshAgentAuth, CredentialCommandAuth],
    Field(discriminator="type"),
]


# ── hosts ─────────────────────────────────────────────────────────────────


class HostConnectionOptions(_RegistryModel):
    """Advisory connection tuning; only the keep-alive is acted upon."""

    keep_alive_interval_ms: Optional[int] = Field(default=None, gt=0)
    max_pool_size: Optional[int] = Field(default=None, gt=0)


class HostConfig(_RegistryModel):
    alias: NonEmptyStr
    host: NonEmptyStr
    port: int = Field(default=22, ge=1, le=65535)
    username: NonEmptyStr
    auth: AuthConfig
    default_shell: Optional[NonEmptyStr] = None
    working_directory: Optional[NonEmptyStr] = None
    known_hosts_path: Optional[NonEmptyStr] = None
    strict_host_key_checking: bool = False
    connection: Optional[HostConnectionOptions] = None


class RemoteServerConfig(_RegistryModel):
    hosts: list[HostConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_aliases(self) -> "RemoteServerConfig":
        seen: set[str] = set()
        for host in self.hosts:
            if host.alias in seen:
                raise ValueError(f"duplicate host alias '{host.alias}'")
            seen.add(host.alias)
        return self


class HostRegistry:
    """Immutable alias-indexed snapshot of a loaded configuration.

    A new snapshot is built for every reload and swapped in wholesale, so a
    reader holding a reference never sees a half-applied update.
    """

    __slots__ = ("_hosts",)

    def __init__(self, hosts: Mapping[str, HostConfig]) -> None:
        self._hosts: Mapping[str, HostConfig] = MappingProxyType(dict(hosts))

    @classmethod
    def from_config(cls, config: RemoteServerConfig) -> "HostRegistry":
        return cls({host.alias: host for host in config.hosts})

    def get(self, alias: str) -> HostConfig | None:
        return self._hosts.get(alias)

    @property
    def aliases(self) -> list[str]:
        return list(self._hosts)

    def __len__(self) -> int:
        return len(self._hosts)

    def __contains__(self, alias: object) -> bool:
        return alias in self._hosts
