"""INFO parsing and server metrics aggregation."""

from __future__ import annotations

import logging
import re
from typing import Mapping

from .connections import ConnectionRegistry, run_batch
from .models import DashboardStats, DatabaseStats, DataType, ServerSnapshot

LOG = logging.getLogger(__name__)

INFO_SECTIONS = ("server", "clients", "memory", "stats", "replication", "keyspace")

# Fields that appear before any "# Section" header land here.
DEFAULT_SECTION = "default"

_DATABASE_FIELD = re.compile(r"^db(\d+)$")


def parse_info(text: str) -> dict[str, dict[str, str]]:
    """Split INFO output into ``{section: {field: value}}``.

    Section names are lower-cased. Blank lines and lines without a ``:``
    separator are skipped.
    """

    sections: dict[str, dict[str, str]] = {}
    current: dict[str, str] | None = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith("#"):
            name = line.lstrip("#").strip().lower()
            current = sections.setdefault(name or DEFAULT_SECTION, {})
            continue
        field, separator, value = line.partition(":")
        if not separator or not field:
            continue
        if current is None:
            current = sections.setdefault(DEFAULT_SECTION, {})
        current[field] = value
    return sections


def parse_keyspace(section: Mapping[str, str]) -> tuple[DatabaseStats, ...]:
    """Turn ``db0:keys=5,expires=2,avg_ttl=1800`` entries into ``DatabaseStats``."""

    databases: list[DatabaseStats] = []
    for field, value in section.items():
        match = _DATABASE_FIELD.match(field)
        if match is None:
            continue
        counters: dict[str, str] = {}
        for pair in value.split(","):
            name, _, number = pair.partition("=")
            counters[name.strip()] = number.strip()
        databases.append(
            DatabaseStats(
                db=int(match.group(1)),
                keys=_to_int(counters.get("keys")),
                expires=_to_int(counters.get("expires")),
                avg_ttl=_to_int(counters.get("avg_ttl")),
            )
        )
    return tuple(sorted(databases, key=lambda database: database.db))


class MetricsReporter:
    """Reads INFO for a registered connection and shapes it for the console."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    async def snapshot(self, connection_id: str) -> ServerSnapshot:
        session = self._registry.lookup(connection_id)
        replies = await run_batch(session, [("INFO", section) for section in INFO_SECTIONS])
        sections: dict[str, dict[str, str]] = {}
        for requested, reply in zip(INFO_SECTIONS, replies):
            if reply is None or isinstance(reply, Exception):
                LOG.debug(
                    "INFO section unavailable",
                    extra={"connection_id": connection_id, "section": requested, "error": str(reply)},
                )
                continue
            for name, fields in parse_info(str(reply)).items():
                sections.setdefault(name, {}).update(fields)
        return build_snapshot(sections)

    async def dashboard(
        self,
        connection_id: str,
        keyspace_by_type: Mapping[DataType, int] | None = None,
    ) -> DashboardStats:
        snapshot = await self.snapshot(connection_id)
        return DashboardStats(
            total_keys=snapshot.total_keys,
            total_memory=snapshot.used_memory,
            connected_clients=snapshot.connected_clients,
            ops_per_second=snapshot.instantaneous_ops_per_sec,
            hit_rate=snapshot.hit_rate,
            keyspace_by_type=dict(keyspace_by_type or {}),
        )


def build_snapshot(sections: Mapping[str, Mapping[str, str]]) -> ServerSnapshot:
    server = sections.get("server", {})
    clients = sections.get("clients", {})
    memory = sections.get("memory", {})
    stats = sections.get("stats", {})
    replication = sections.get("replication", {})
    defaults = ServerSnapshot()
    return ServerSnapshot(
        version=server.get("redis_version", defaults.version),
        mode=server.get("redis_mode", defaults.mode),
        role=replication.get("role", defaults.role),
        connected_clients=_to_int(clients.get("connected_clients")),
        used_memory=_to_int(memory.get("used_memory")),
        used_memory_human=memory.get("used_memory_human", ""),
        total_system_memory=_to_int(memory.get("total_system_memory")),
        max_memory=_to_int(memory.get("maxmemory")),
        max_memory_human=memory.get("maxmemory_human", ""),
        keyspace_hits=_to_int(stats.get("keyspace_hits")),
        keyspace_misses=_to_int(stats.get("keyspace_misses")),
        total_connections_received=_to_int(stats.get("total_connections_received")),
        total_commands_processed=_to_int(stats.get("total_commands_processed")),
        instantaneous_ops_per_sec=_to_int(stats.get("instantaneous_ops_per_sec")),
        uptime_seconds=_to_int(server.get("uptime_in_seconds")),
        databases=parse_keyspace(sections.get("keyspace", {})),
    )


def _to_int(value: str | None) -> int:
    if not value:
        return 0
    try:
        return int(value)
    except ValueError:
        try:
            return int(float(value))
        except (ValueError, OverflowError):
            return 0


__all__ = [
    "INFO_SECTIONS",
    "MetricsReporter",
    "build_snapshot",
    "parse_info",
    "parse_keyspace",
]
