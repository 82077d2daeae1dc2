"""Tests for INFO parsing and the metrics reporter."""

from __future__ import annotations

import pytest

from redisui.connections import NotConnectedError
from redisui.metrics import MetricsReporter, build_snapshot, parse_info, parse_keyspace
from redisui.models import DatabaseStats, DataType


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_parse_info_groups_fields_by_section() -> None:
    text = "# Server\r\nredis_version:7.2.4\r\n\r\n# Clients\r\nconnected_clients:2\r\ngarbage line\r\n"

    sections = parse_info(text)

    assert sections == {
        "server": {"redis_version": "7.2.4"},
        "clients": {"connected_clients": "2"},
    }


def test_parse_info_without_headers_uses_default_section() -> None:
    assert parse_info("role:replica\nmaster_port:6379") == {
        "default": {"role": "replica", "master_port": "6379"},
    }
    assert parse_info("") == {}


def test_parse_keyspace_reads_database_counters() -> None:
    databases = parse_keyspace(
        {
            "db3": "keys=2,expires=0,avg_ttl=0",
            "db0": "keys=5,expires=2,avg_ttl=1800,subexpiry=0",
            "other": "ignored",
        }
    )

    assert databases == (
        DatabaseStats(db=0, keys=5, expires=2, avg_ttl=1800),
        DatabaseStats(db=3, keys=2, expires=0, avg_ttl=0),
    )


def test_build_snapshot_ignores_unparseable_numbers() -> None:
    snapshot = build_snapshot(
        {
            "stats": {"instantaneous_ops_per_sec": "inf", "keyspace_hits": "12.0"},
            "memory": {"used_memory": "nan", "used_memory_human": "?"},
            "clients": {"connected_clients": "-inf"},
        }
    )

    assert snapshot.instantaneous_ops_per_sec == 0
    assert snapshot.keyspace_hits == 12
    assert snapshot.used_memory == 0
    assert snapshot.connected_clients == 0


@pytest.mark.anyio
async def test_snapshot_reads_all_sections(registry, local_profile) -> None:
    await registry.connect(local_profile)
    reporter = MetricsReporter(registry)

    snapshot = await reporter.snapshot("local")

    assert snapshot.version == "7.2.4"
    assert snapshot.mode == "standalone"
    assert snapshot.role == "master"
    assert snapshot.connected_clients == 3
    assert snapshot.used_memory == 1048576
    assert snapshot.used_memory_human == "1.00M"
    assert snapshot.instantaneous_ops_per_sec == 12
    assert snapshot.uptime_seconds == 3600
    assert snapshot.total_keys == 6
    assert snapshot.hit_rate == pytest.approx(0.75)


@pytest.mark.anyio
async def test_snapshot_tolerates_failing_sections(registry, local_profile, fake_server) -> None:
    await registry.connect(local_profile)
    fake_server.failing_commands.add("memory")
    fake_server.info.pop("keyspace")
    reporter = MetricsReporter(registry)

    snapshot = await reporter.snapshot("local")

    assert snapshot.used_memory == 0
    assert snapshot.used_memory_human == ""
    assert snapshot.databases == ()
    assert snapshot.connected_clients == 3


@pytest.mark.anyio
async def test_snapshot_unknown_connection(registry) -> None:
    with pytest.raises(NotConnectedError):
        await MetricsReporter(registry).snapshot("nowhere")


@pytest.mark.anyio
async def test_dashboard_combines_snapshot_and_type_counts(registry, local_profile) -> None:
    await registry.connect(local_profile)
    reporter = MetricsReporter(registry)

    stats = await reporter.dashboard("local", {DataType.STRING: 4, DataType.HASH: 2})

    assert stats.total_keys == 6
    assert stats.total_memory == 1048576
    assert stats.connected_clients == 3
    assert stats.ops_per_second == 12
    assert stats.hit_rate == pytest.approx(0.75)
    assert stats.keyspace_by_type == {DataType.STRING: 4, DataType.HASH: 2}
