"""Tests for the connection registry."""

from __future__ import annotations

import asyncio

import pytest
from redis.exceptions import AuthenticationError, ConnectionError

from redisui.config import ConnectionSettings
from redisui.connections import (
    ConnectError,
    ConnectionRegistry,
    LinearBackoff,
    NotConnectedError,
    create_client,
)
from redisui.models import ConnectionProfile


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_lookup_unknown_id_raises() -> None:
    registry = ConnectionRegistry()

    with pytest.raises(NotConnectedError) as excinfo:
        registry.lookup("missing")

    assert excinfo.value.connection_id == "missing"
    assert registry.list_connections() == ()


def test_linear_backoff_is_capped() -> None:
    backoff = LinearBackoff(step=0.05, cap=0.5)

    assert backoff.compute(0) == 0
    assert backoff.compute(3) == pytest.approx(0.15)
    assert backoff.compute(50) == 0.5


def test_create_client_keeps_wire_replies() -> None:
    profile = ConnectionProfile(id="cache", name="Cache", host="cache.internal", port=6380, db=2)

    client = create_client(profile, ConnectionSettings())

    assert client.response_callbacks == {}
    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["host"] == "cache.internal"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2


def test_create_client_does_not_resend_commands_by_default() -> None:
    client = create_client(ConnectionProfile(id="cache", name="Cache"), ConnectionSettings())

    assert ConnectionSettings().command_retries == 0
    assert client.connection_pool.connection_kwargs["retry"]._retries == 0


@pytest.mark.anyio
async def test_connect_then_disconnect_leaves_no_session(registry, local_profile, fake_server) -> None:
    status = await registry.connect(local_profile)

    assert status.connected is True
    assert status.connected_at is not None
    assert registry.lookup("local") is fake_server.clients[-1]

    await registry.disconnect("local")

    assert fake_server.clients[-1].closed is True
    assert registry.is_connected("local") is False
    with pytest.raises(NotConnectedError):
        registry.lookup("local")


@pytest.mark.anyio
async def test_disconnect_is_idempotent(registry) -> None:
    await registry.disconnect("local")
    await registry.disconnect("never-registered")

    assert registry.is_connected("local") is False


@pytest.mark.anyio
async def test_reconnect_replaces_existing_session(registry, local_profile, fake_server) -> None:
    await registry.connect(local_profile)
    first = registry.lookup("local")

    await registry.connect(local_profile)

    assert first.closed is True
    assert registry.lookup("local") is not first


@pytest.mark.anyio
async def test_connect_retries_until_server_answers(registry, local_profile, fake_server) -> None:
    fake_server.ping_failures = 2

    status = await registry.connect(local_profile)

    assert status.connected is True
    assert len(fake_server.clients) == 3
    assert [client.closed for client in fake_server.clients] == [True, True, False]


@pytest.mark.anyio
async def test_connect_gives_up_after_max_attempts(registry, local_profile, fake_server) -> None:
    fake_server.ping_failures = 10

    with pytest.raises(ConnectError) as excinfo:
        await registry.connect(local_profile)

    assert isinstance(excinfo.value.cause, ConnectionError)
    assert excinfo.value.__cause__ is excinfo.value.cause
    assert "after 3 attempt(s)" in str(excinfo.value)
    assert len(fake_server.clients) == 3
    assert registry.is_connected("local") is False


@pytest.mark.anyio
async def test_authentication_failure_is_not_retried(registry, local_profile, fake_server) -> None:
    fake_server.reject_auth = True

    with pytest.raises(ConnectError) as excinfo:
        await registry.connect(local_profile)

    assert isinstance(excinfo.value.cause, AuthenticationError)
    assert len(fake_server.clients) == 1
    assert fake_server.clients[0].closed is True


@pytest.mark.anyio
async def test_racing_connects_leave_exactly_one_session(registry, local_profile, fake_server) -> None:
    fake_server.ping_delay = 0.01

    results = await asyncio.gather(
        registry.connect(local_profile),
        registry.connect(local_profile),
        return_exceptions=True,
    )

    errors = [result for result in results if isinstance(result, ConnectError)]
    assert len(errors) == 1
    assert "superseded" in str(errors[0])
    live = [client for client in fake_server.clients if not client.closed]
    assert len(live) == 1
    assert registry.lookup("local") is live[0]


@pytest.mark.anyio
async def test_disconnect_cancels_pending_connect(client_factory, local_profile, fake_server) -> None:
    fake_server.ping_failures = 1000
    settings = ConnectionSettings(backoff_step=0.01, backoff_cap=0.01, max_connect_attempts=0)
    slow = ConnectionRegistry([local_profile], settings=settings, client_factory=client_factory)

    task = asyncio.create_task(slow.connect(local_profile))
    await asyncio.sleep(0.03)
    assert slow.list_connections()[0].connecting is True

    await slow.disconnect("local")

    with pytest.raises(ConnectError):
        await task
    assert slow.is_connected("local") is False
    assert all(client.closed for client in fake_server.clients)


@pytest.mark.anyio
async def test_distinct_ids_connect_independently(client_factory, fast_settings, fake_server) -> None:
    primary = ConnectionProfile(id="primary", name="Primary")
    replica = ConnectionProfile(id="replica", name="Replica", port=6380)
    registry = ConnectionRegistry(settings=fast_settings, client_factory=client_factory)

    await asyncio.gather(registry.connect(primary), registry.connect(replica))

    assert {status.profile.id for status in registry.list_connections() if status.connected} == {"primary", "replica"}
    await registry.close_all()
    assert all(client.closed for client in fake_server.clients)


@pytest.mark.anyio
async def test_test_connection_does_not_register(registry, fake_server) -> None:
    adhoc = ConnectionProfile(id="adhoc", name="Ad hoc")

    latency = await registry.test_connection(adhoc)

    assert latency >= 0
    assert registry.profile("adhoc") is None
    assert fake_server.clients[-1].closed is True


@pytest.mark.anyio
async def test_test_connection_reports_failure(registry, fake_server) -> None:
    fake_server.ping_failures = 1

    with pytest.raises(ConnectError):
        await registry.test_connection(ConnectionProfile(id="adhoc", name="Ad hoc"))


@pytest.mark.anyio
async def test_remove_profile_disconnects_first(registry, local_profile, fake_server) -> None:
    await registry.connect(local_profile)

    await registry.remove_profile("local")

    assert registry.profiles == ()
    assert fake_server.clients[-1].closed is True
    assert "local" not in registry._locks
    assert "local" not in registry._generations


def test_profile_rejects_invalid_port_and_db() -> None:
    with pytest.raises(ValueError):
        ConnectionProfile(id="x", name="x", port=70000)
    with pytest.raises(ValueError):
        ConnectionProfile(id="x", name="x", db=-1)
