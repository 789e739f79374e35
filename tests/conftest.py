"""Shared pytest fixtures."""

from __future__ import annotations

import os

# Force settings to use test-safe defaults before any import
os.environ.setdefault("REMOTE_EXEC_API_KEY", "")
os.environ.setdefault("REMOTE_EXEC_CONFIG_PATH", "/nonexistent/remote-exec.toml")
os.environ.setdefault("REMOTE_EXEC_HOOK_TIMEOUT_SECONDS", "5")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from remote_exec.models.hosts import RemoteServerConfig
from remote_exec.services.command_service import CommandService
from remote_exec.services.hooks import ExecutionHookManager
from tests.fakes import (
    STAGING,
    FakeTransport,
    RecordingHooks,
    RecordingTelemetry,
    make_config,
)


@pytest.fixture
def config() -> RemoteServerConfig:
    return make_config(STAGING)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(chunks=[("stdout", "hello\n")])


@pytest.fixture
def hooks() -> RecordingHooks:
    return RecordingHooks()


@pytest.fixture
def telemetry() -> RecordingTelemetry:
    return RecordingTelemetry()


@pytest.fixture
def service(config, transport, hooks, telemetry) -> CommandService:
    return CommandService(
        config=config,
        transport=transport,
        hooks=ExecutionHookManager(hooks),
        telemetry=telemetry,
    )


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest_asyncio.fixture
async def client(service):
    """Async test client with the fake-backed command service injected."""
    from remote_exec.main import app as fastapi_app

    fastapi_app.state.command_service = service
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    del fastapi_app.state.command_service
