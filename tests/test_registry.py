"""Tests for TOML config loading and the hot-reload watcher."""

from __future__ import annotations

import asyncio

import pytest

from remote_exec.models.hosts import HostRegistry, SshKeyAuth
from remote_exec.services.registry import ConfigLoadError, ConfigWatcher, load_config

VALID = """
[[hosts]]
alias = "staging"
host = "staging.example.com"
username = "deploy"
auth = { type = "ssh-key", privateKeyPath = "~/.ssh/id_ed25519", passphrasePrompt = true }

[[hosts]]
alias = "build"
host = "10.0.0.7"
port = 2200
username = "ci"
default_shell = "/bin/bash"
auth = { type = "credential-command", credential_command = "pass show build" }
connection = { keepAliveIntervalMs = 15000 }
"""

ONE_HOST = """
[[hosts]]
alias = "solo"
host = "solo.example.com"
username = "me"
auth = { type = "ssh-agent" }
"""


def write(tmp_path, text: str, name: str = "config.toml"):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestLoad:
    def test_valid_file(self, tmp_path):
        config = load_config(write(tmp_path, VALID))
        staging, build = config.hosts

        assert staging.port == 22
        assert staging.strict_host_key_checking is False
        assert isinstance(staging.auth, SshKeyAuth)
        assert staging.auth.passphrase_prompt is True
        assert build.port == 2200
        assert build.default_shell == "/bin/bash"
        assert build.connection.keep_alive_interval_ms == 15000

        registry = HostRegistry.from_config(config)
        assert sorted(registry.aliases) == ["build", "staging"]
        assert registry.get("missing") is None

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="Configuration file not found") as info:
            load_config(tmp_path / "nope.toml")
        assert info.value.config_path.endswith("nope.toml")

    def test_missing_file_allowed(self, tmp_path):
        config = load_config(tmp_path / "nope.toml", allow_missing=True)
        assert config.hosts == []

    def test_bad_toml(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="Failed to parse TOML"):
            load_config(write(tmp_path, "[[hosts]\nalias = "))

    def test_schema_violation_lists_field(self, tmp_path):
        text = ONE_HOST.replace('username = "me"\n', "port = 70000\n")
        with pytest.raises(ConfigLoadError, match="Configuration validation error") as info:
            load_config(write(tmp_path, text))

        message = str(info.value)
        assert "port" in message
        assert "username" in message

    def test_unknown_auth_type(self, tmp_path):
        text = ONE_HOST.replace("ssh-agent", "kerberos")
        with pytest.raises(ConfigLoadError, match="auth"):
            load_config(write(tmp_path, text))

    def test_duplicate_alias(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="solo"):
            load_config(write(tmp_path, ONE_HOST + ONE_HOST))

    def test_empty_host_list(self, tmp_path):
        with pytest.raises(ConfigLoadError, match="At least one host entry"):
            load_config(write(tmp_path, "hosts = []\n"))


class TestWatcher:
    @pytest.mark.asyncio
    async def test_initial_load_and_reload(self, tmp_path):
        path = write(tmp_path, ONE_HOST)
        seen: list[list[str]] = []
        changed = asyncio.Event()

        def handler(config):
            seen.append([h.alias for h in config.hosts])
            changed.set()

        watcher = ConfigWatcher(handler, path, poll_interval=0.02, debounce=0.01)
        watcher.start()
        try:
            await asyncio.wait_for(changed.wait(), 2)
            assert seen == [["solo"]]

            changed.clear()
            path.write_text(VALID)
            await asyncio.wait_for(changed.wait(), 2)
            assert seen[-1] == ["staging", "build"]
        finally:
            await watcher.close()

    @pytest.mark.asyncio
    async def test_invalid_edit_keeps_previous_registry(self, tmp_path):
        path = write(tmp_path, ONE_HOST)
        seen: list[list[str]] = []
        errors: list[Exception] = []
        loaded = asyncio.Event()
        failed = asyncio.Event()

        def handler(config):
            seen.append([h.alias for h in config.hosts])
            loaded.set()

        def on_error(exc):
            errors.append(exc)
            failed.set()

        watcher = ConfigWatcher(
            handler, path, poll_interval=0.02, debounce=0.01, on_error=on_error,
        )
        watcher.start()
        try:
            await asyncio.wait_for(loaded.wait(), 2)
            path.write_text("this is = = not toml")
            await asyncio.wait_for(failed.wait(), 2)
        finally:
            await watcher.close()

        assert seen == [["solo"]]
        assert isinstance(errors[0], ConfigLoadError)

    @pytest.mark.asyncio
    async def test_async_handler_is_awaited(self, tmp_path):
        path = write(tmp_path, ONE_HOST)
        done = asyncio.Event()

        async def handler(config):
            await asyncio.sleep(0)
            done.set()

        watcher = ConfigWatcher(handler, path, poll_interval=0.02, debounce=0.01)
        watcher.start()
        try:
            await asyncio.wait_for(done.wait(), 2)
        finally:
            await watcher.close()

    @pytest.mark.asyncio
    async def test_close_without_start(self, tmp_path):
        watcher = ConfigWatcher(lambda config: None, tmp_path / "config.toml")
        await watcher.close()
        assert watcher.path == (tmp_path / "config.toml").resolve()
