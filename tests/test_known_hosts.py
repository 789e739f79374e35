"""Tests for known_hosts parsing and host key verification."""

from __future__ import annotations

import base64

import pytest

from remote_exec.models.hosts import HostConfig
from remote_exec.services.known_hosts import (
    build_host_verifier,
    host_candidates,
    parse_known_hosts,
)
from remote_exec.services.transport import ConfigError

KEY_ONE = b"\x00\x00\x00\x0bssh-ed25519 key-one"
KEY_TWO = b"\x00\x00\x00\x0bssh-ed25519 key-two"
B64_ONE = base64.b64encode(KEY_ONE).decode()
B64_TWO = base64.b64encode(KEY_TWO).decode()


def make_host(**overrides) -> HostConfig:
    data = {
        "alias": "db",
        "host": "10.0.0.5",
        "port": 2222,
        "username": "ops",
        "auth": {"type": "ssh-agent"},
        "strictHostKeyChecking": True,
    }
    data.update(overrides)
    return HostConfig.model_validate(data)


class TestParse:
    def test_skips_comments_markers_and_hashed(self):
        text = "\n".join([
            "# comment",
            "",
            f"@cert-authority *.example.com ssh-ed25519 {B64_TWO}",
            f"|1|abc=|def= ssh-ed25519 {B64_TWO}",
            "short-line ssh-ed25519",
            f"web,10.0.0.9 ssh-ed25519 {B64_ONE} trailing comment",
        ])
        entries = parse_known_hosts(text)

        assert len(entries) == 1
        assert entries[0].hostnames == frozenset({"web", "10.0.0.9"})
        assert entries[0].key == B64_ONE

    def test_crlf_lines(self):
        entries = parse_known_hosts(f"a ssh-rsa {B64_ONE}\r\nb ssh-rsa {B64_TWO}\r\n")
        assert [e.key for e in entries] == [B64_ONE, B64_TWO]


class TestCandidates:
    def test_all_forms(self):
        assert host_candidates(make_host()) == frozenset(
            {"10.0.0.5", "10.0.0.5:2222", "[10.0.0.5]:2222", "db"},
        )


class TestVerifier:
    def test_disabled_reads_nothing(self, tmp_path):
        host = make_host(
            strictHostKeyChecking=False,
            knownHostsPath=str(tmp_path / "does-not-exist"),
        )
        assert build_host_verifier(host) is None

    def test_missing_store_fails_closed(self, tmp_path):
        host = make_host(knownHostsPath=str(tmp_path / "missing"))
        with pytest.raises(ConfigError, match="not found"):
            build_host_verifier(host)

    def test_store_without_usable_entries_fails_closed(self, tmp_path):
        store = tmp_path / "known_hosts"
        store.write_text(f"# nothing\n|1|x|y ssh-rsa {B64_ONE}\n")
        host = make_host(knownHostsPath=str(store))
        with pytest.raises(ConfigError, match="No entries"):
            build_host_verifier(host)

    @pytest.mark.parametrize(
        "pattern", ["10.0.0.5", "10.0.0.5:2222", "[10.0.0.5]:2222", "db"],
    )
    def test_accepts_matching_name_and_key(self, tmp_path, pattern):
        store = tmp_path / "known_hosts"
        store.write_text(f"other ssh-ed25519 {B64_TWO}\n{pattern} ssh-ed25519 {B64_ONE}\n")
        verify = build_host_verifier(make_host(knownHostsPath=str(store)))

        assert verify is not None
        assert verify(KEY_ONE) is True

    def test_rejects_wrong_key(self, tmp_path):
        store = tmp_path / "known_hosts"
        store.write_text(f"db ssh-ed25519 {B64_ONE}\n")
        verify = build_host_verifier(make_host(knownHostsPath=str(store)))

        assert verify(KEY_TWO) is False

    def test_rejects_key_listed_for_another_host(self, tmp_path):
        store = tmp_path / "known_hosts"
        store.write_text(f"elsewhere ssh-ed25519 {B64_ONE}\n")
        verify = build_host_verifier(make_host(knownHostsPath=str(store)))

        assert verify(KEY_ONE) is False

    def test_default_store_location(self, tmp_path, monkeypatch):
        monkeypatch.setenv("HOME", str(tmp_path))
        (tmp_path / ".ssh").mkdir()
        (tmp_path / ".ssh" / "known_hosts").write_text(f"db ssh-ed25519 {B64_ONE}\n")

        verify = build_host_verifier(make_host())
        assert verify(KEY_ONE) is True
