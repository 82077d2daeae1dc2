"""Tests for the request/response boundary."""

from __future__ import annotations

import pytest

from redisui.api import ApiResponse, RedisConsoleApi
from redisui.config import AppConfig, ConnectionProfileConfig, ConnectionSettings
from redisui.models import ConnectionProfile, DataType, KeyPage


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def saved() -> list[AppConfig]:
    return []


@pytest.fixture
def api(client_factory, saved) -> RedisConsoleApi:
    config = AppConfig(
        profiles=[ConnectionProfileConfig(id="local", name="Local Redis")],
        connection=ConnectionSettings(backoff_step=0, backoff_cap=0, max_connect_attempts=2),
    )
    return RedisConsoleApi(config, client_factory=client_factory, persist=saved.append)


def test_api_response_helpers() -> None:
    assert ApiResponse.ok([1], "done") == ApiResponse(success=True, data=[1], message="done")
    failure = ApiResponse.fail("boom")
    assert failure.success is False
    assert failure.error == "boom"
    assert failure.data is None


@pytest.mark.anyio
async def test_connect_by_id_and_list(api: RedisConsoleApi) -> None:
    response = await api.connect("local")

    assert response.success is True
    assert response.message == "Connected to Local Redis."
    statuses = api.list_connections().data
    assert [(status.profile.id, status.connected) for status in statuses] == [("local", True)]


@pytest.mark.anyio
async def test_connect_unknown_id_fails(api: RedisConsoleApi) -> None:
    response = await api.connect("ghost")

    assert response.success is False
    assert "ghost" in response.error


@pytest.mark.anyio
async def test_connect_failure_is_reported_not_raised(api: RedisConsoleApi, fake_server) -> None:
    fake_server.ping_failures = 5

    response = await api.connect("local")

    assert response.success is False
    assert "after 2 attempt(s)" in response.error


@pytest.mark.anyio
async def test_operations_on_disconnected_id_fail(api: RedisConsoleApi) -> None:
    for response in (
        await api.get_keys("local"),
        await api.get_server_info("local"),
        await api.execute_command("local", "PING"),
        await api.delete_keys("local", ["a"]),
    ):
        assert response.success is False
        assert response.error == "Connection 'local' is not connected."


@pytest.mark.anyio
async def test_get_keys_and_details(api: RedisConsoleApi, fake_server) -> None:
    fake_server.set("user:1", "alice")
    fake_server.set("user:2", "bob")
    fake_server.add("profile:1", "hash", {"name": "alice"})
    await api.connect("local")

    keys = await api.get_keys("local", "user:*", page_size=1)
    hashes = await api.get_keys("local", data_type="hash")
    details = await api.get_key_details("local", "user:2")
    missing = await api.get_key_details("local", "ghost")

    assert isinstance(keys.data, KeyPage)
    assert keys.data.total == 2
    assert [item.name for item in hashes.data.items] == ["profile:1"]
    assert details.data.value == "bob"
    assert missing.success is True
    assert missing.data is None
    assert missing.message == "Key 'ghost' not found."


@pytest.mark.anyio
async def test_invalid_arguments_fail_cleanly(api: RedisConsoleApi) -> None:
    await api.connect("local")

    bad_sort = await api.get_keys("local", sort_by="weight")
    bad_type = await api.get_keys("local", data_type="graph")

    assert bad_sort.success is False
    assert bad_type.success is False


@pytest.mark.anyio
async def test_key_mutations(api: RedisConsoleApi, fake_server) -> None:
    fake_server.set("a", "1")
    fake_server.set("b", "2")
    await api.connect("local")

    renamed = await api.rename_key("local", "a", "c")
    ttl = await api.set_key_ttl("local", "c", 30)
    missing_rename = await api.rename_key("local", "ghost", "other")
    deleted = await api.delete_key("local", "c")
    absent = await api.delete_key("local", "c")
    flushed = await api.flush_database("local")

    assert renamed.success is True
    assert ttl.data is True
    assert missing_rename.success is False
    assert "no such key" in missing_rename.error
    assert deleted.data == 1
    assert absent.message == "Key 'c' did not exist."
    assert flushed.success is True
    assert fake_server.data == {}


@pytest.mark.anyio
async def test_execute_command_and_history(api: RedisConsoleApi) -> None:
    await api.connect("local")

    ok = await api.execute_command("local", "PING")
    failed = await api.execute_command("local", "BOGUS")
    history = api.get_command_history("local").data

    assert ok.success is True
    assert ok.data.reply.render() == "PONG"
    assert failed.success is False
    assert failed.data.error == failed.error
    assert [entry.command for entry in history] == ["BOGUS", "PING"]


@pytest.mark.anyio
async def test_dashboard_stats(api: RedisConsoleApi, fake_server) -> None:
    fake_server.set("a", "1")
    fake_server.add("q", "list", ["x"])
    await api.connect("local")

    response = await api.get_dashboard_stats("local")

    assert response.success is True
    assert response.data.keyspace_by_type == {DataType.STRING: 1, DataType.LIST: 1}
    assert response.data.connected_clients == 3


@pytest.mark.anyio
async def test_saved_connections_are_persisted(api: RedisConsoleApi, saved) -> None:
    replica = ConnectionProfile(id="replica", name="Replica", port=6380)

    created = await api.save_connection(replica)
    duplicate = await api.save_connection(replica)
    updated = await api.update_connection(ConnectionProfile(id="replica", name="Replica B", port=6381))
    activated = api.set_active_connection("replica")
    removed = await api.delete_connection("replica")

    assert created.success is True
    assert duplicate.success is False
    assert updated.success is True
    assert activated.success is True
    assert removed.success is True
    assert [entry.id for entry in saved[0].profiles] == ["local", "replica"]
    assert saved[1].profile("replica").port == 6381
    assert saved[2].active_profile == "replica"
    assert saved[-1].profile("replica") is None
    assert saved[-1].active_profile is None
    assert [profile.id for profile in api.profiles] == ["local"]


@pytest.mark.anyio
async def test_update_reconnects_live_session(api: RedisConsoleApi, fake_server) -> None:
    await api.connect("local")
    first = api.registry.lookup("local")

    response = await api.update_connection(ConnectionProfile(id="local", name="Local Redis", db=3))

    assert response.success is True
    assert first.closed is True
    assert api.registry.lookup("local").profile.db == 3


@pytest.mark.anyio
async def test_unknown_profile_updates_fail(api: RedisConsoleApi) -> None:
    assert (await api.update_connection(ConnectionProfile(id="x", name="x"))).success is False
    assert (await api.delete_connection("x")).success is False
    assert api.set_active_connection("x").success is False


@pytest.mark.anyio
async def test_test_connection_reports_latency(api: RedisConsoleApi) -> None:
    response = await api.test_connection(ConnectionProfile(id="probe", name="Probe"))

    assert response.success is True
    assert response.data >= 0
    assert "localhost:6379/0" in response.message


@pytest.mark.anyio
async def test_unexpected_errors_are_contained(api: RedisConsoleApi, monkeypatch: pytest.MonkeyPatch) -> None:
    await api.connect("local")

    async def _explode(*args, **kwargs):
        raise KeyError("surprise")

    monkeypatch.setattr(api._metrics, "snapshot", _explode)

    response = await api.get_server_info("local")

    assert response.success is False
    assert response.error.startswith("Unexpected error")
