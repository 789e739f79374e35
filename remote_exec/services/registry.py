"""Host registry loading (TOML + pydantic validation) and hot reload.

The watcher polls the file's mtime/size on the event loop, debounces bursts
of writes and hands every successfully validated configuration to a handler,
typically ``CommandService.update_config``.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import tomllib
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from pydantic import ValidationError

from remote_exec.config import Settings, settings
from remote_exec.models.hosts import RemoteServerConfig
from remote_exec.utils.logging import get_logger

log = get_logger(__name__)

ConfigChangeHandler = Callable[[RemoteServerConfig], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[Exception], None]


class ConfigLoadError(Exception):
    def __init__(self, config_path: Union[str, Path], message: str) -> None:
        super().__init__(message)
        self.config_path = str(config_path)


def resolve_config_path(
    config_path: Union[str, Path, None] = None, cfg: Settings | None = None,
) -> Path:
    cfg = cfg or settings
    override = str(config_path).strip() if config_path else ""
    return Path(override or cfg.config_path).expanduser().resolve()


def _format_issues(exc: ValidationError) -> str:
    return "\n".join(
        f"{'.'.join(str(p) for p in issue['loc']) or 'config'}: {issue['msg']}"
        for issue in exc.errors()
    )


def coerce_config(data: object) -> RemoteServerConfig:
    """Validate parsed TOML data; raise ``ValueError`` listing every issue."""
    try:
        config = RemoteServerConfig.model_validate(data)
    except ValidationError as exc:
        raise ValueError(
            "Invalid remote-exec configuration:\n" + _format_issues(exc),
        ) from exc
    if not config.hosts:
        raise ValueError(
            "Invalid remote-exec configuration:\n"
            "hosts: At least one host entry is required in config",
        )
    return config


def load_config(
    config_path: Union[str, Path, None] = None,
    *,
    allow_missing: bool = False,
    cfg: Settings | None = None,
) -> RemoteServerConfig:
    path = resolve_config_path(config_path, cfg)

    if not path.is_file():
        if allow_missing:
            return RemoteServerConfig(hosts=[])
        raise ConfigLoadError(
            path,
            f"Configuration file not found. Expected at {path}. "
            "Set REMOTE_EXEC_CONFIG_PATH to override the path.",
        )

    try:
        raw = path.read_bytes()
    except OSError as exc:
        raise ConfigLoadError(
            path, f"Failed to read configuration file at {path}: {exc}",
        ) from exc

    try:
        data = tomllib.loads(raw.decode("utf-8"))
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(
            path, f"Failed to parse TOML in configuration file at {path}: {exc}",
        ) from exc

    try:
        return coerce_config(data)
    except ValueError as exc:
        raise ConfigLoadError(
            path, f"Configuration validation error for {path}:\n{exc}",
        ) from exc


class ConfigWatcher:
    """Reload the registry whenever the config file changes."""

    def __init__(
        self,
        handler: ConfigChangeHandler,
        config_path: Union[str, Path, None] = None,
        *,
        poll_interval: float | None = None,
        debounce: float | None = None,
        on_error: Optional[ErrorHandler] = None,
        allow_missing: bool = False,
        cfg: Settings | None = None,
    ) -> None:
        self._cfg = cfg or settings
        self._handler = handler
        self._path = resolve_config_path(config_path, self._cfg)
        self._poll_interval = (
            poll_interval if poll_interval is not None
            else self._cfg.config_poll_interval_seconds
        )
        self._debounce = (
            debounce if debounce is not None else self._cfg.config_debounce_ms / 1000
        )
        self._on_error = on_error
        self._allow_missing = allow_missing
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def path(self) -> Path:
        return self._path

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._watch())

    async def close(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def _signature(self) -> Optional[tuple[int, int]]:
        try:
            st = os.stat(self._path)
        except FileNotFoundError:
            return None
        return (st.st_mtime_ns, st.st_size)

    async def _reload(self) -> None:
        try:
            config = load_config(
                self._path, allow_missing=self._allow_missing, cfg=self._cfg,
            )
            outcome = self._handler(config)
            if inspect.isawaitable(outcome):
                await outcome
            log.info("registry.reloaded", path=str(self._path), hosts=len(config.hosts))
        except Exception as exc:
            log.warning("registry.reload_failed", path=str(self._path), error=str(exc))
            if self._on_error is not None:
                self._on_error(exc)

    async def _watch(self) -> None:
        last = self._signature()
        await self._reload()
        while True:
            await asyncio.sleep(self._poll_interval)
            current = self._signature()
            if current == last:
                continue
            # Let a burst of writes settle before reading the file.
            await asyncio.sleep(self._debounce)
            last = self._signature()
            if last is None and not self._allow_missing:
                continue
            await self._reload()
