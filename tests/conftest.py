"""Shared fixtures: an in-memory stand-in for a Redis server and its clients."""

from __future__ import annotations

import asyncio
import fnmatch
from dataclasses import dataclass, field
from typing import Any

import pytest
from redis.exceptions import AuthenticationError, ConnectionError, ResponseError

from redisui.config import ConnectionSettings
from redisui.connections import ConnectionRegistry
from redisui.models import ConnectionProfile

INFO_TEXT = {
    "server": "# Server\r\nredis_version:7.2.4\r\nredis_mode:standalone\r\nuptime_in_seconds:3600\r\n",
    "clients": "# Clients\r\nconnected_clients:3\r\n",
    "memory": (
        "# Memory\r\nused_memory:1048576\r\nused_memory_human:1.00M\r\n"
        "total_system_memory:8589934592\r\nmaxmemory:0\r\nmaxmemory_human:0B\r\n"
    ),
    "stats": (
        "# Stats\r\ntotal_connections_received:10\r\ntotal_commands_processed:250\r\n"
        "instantaneous_ops_per_sec:12\r\nkeyspace_hits:30\r\nkeyspace_misses:10\r\n"
    ),
    "replication": "# Replication\r\nrole:master\r\nconnected_slaves:0\r\n",
    "keyspace": "# Keyspace\r\ndb0:keys=4,expires=1,avg_ttl=1800\r\ndb3:keys=2,expires=0,avg_ttl=0\r\n",
}


@dataclass
class FakeServer:
    """State shared by every client a test's factory hands out."""

    data: dict[str, tuple[str, Any]] = field(default_factory=dict)
    expiry: dict[str, int] = field(default_factory=dict)
    info: dict[str, str] = field(default_factory=lambda: dict(INFO_TEXT))
    failing_commands: set[str] = field(default_factory=set)
    ping_failures: int = 0
    ping_delay: float = 0.0
    reject_auth: bool = False
    clients: list["FakeRedis"] = field(default_factory=list)
    commands: list[tuple[str, ...]] = field(default_factory=list)

    def set(self, key: str, value: str, ttl: int | None = None) -> None:
        self.data[key] = ("string", value)
        if ttl is not None:
            self.expiry[key] = ttl

    def add(self, key: str, kind: str, value: Any) -> None:
        self.data[key] = (kind, value)


class FakePipeline:
    def __init__(self, client: "FakeRedis") -> None:
        self._client = client
        self._queued: list[tuple[Any, ...]] = []

    async def __aenter__(self) -> "FakePipeline":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self._queued.clear()

    def execute_command(self, *args: Any) -> "FakePipeline":
        self._queued.append(args)
        return self

    async def execute(self, raise_on_error: bool = True) -> list[Any]:
        results: list[Any] = []
        for args in self._queued:
            try:
                results.append(self._client.dispatch(*args))
            except ResponseError as exc:
                if raise_on_error:
                    raise
                results.append(exc)
        self._queued.clear()
        return results


class FakeRedis:
    """Answers the subset of commands the console sends, in wire shape."""

    def __init__(self, server: FakeServer, profile: ConnectionProfile) -> None:
        self.server = server
        self.profile = profile
        self.response_callbacks: dict[str, Any] = {}
        self.closed = False

    async def ping(self) -> str:
        if self.server.ping_delay:
            await asyncio.sleep(self.server.ping_delay)
        if self.server.reject_auth:
            raise AuthenticationError("WRONGPASS invalid username-password pair")
        if self.server.ping_failures > 0:
            self.server.ping_failures -= 1
            raise ConnectionError("Connection refused")
        return "PONG"

    async def aclose(self) -> None:
        self.closed = True

    def pipeline(self, transaction: bool = True) -> FakePipeline:
        return FakePipeline(self)

    async def execute_command(self, *args: Any) -> Any:
        return self.dispatch(*args)

    def dispatch(self, *args: Any) -> Any:
        name = str(args[0]).upper()
        params = [str(arg) for arg in args[1:]]
        self.server.commands.append((name, *params))
        if name in self.server.failing_commands:
            raise ResponseError(f"ERR {name} disabled")
        handler = getattr(self, f"_cmd_{name.lower()}", None)
        if handler is None:
            raise ResponseError(f"ERR unknown command '{args[0]}'")
        return handler(*params)

    def _cmd_ping(self, *params: str) -> str:
        return "PONG"

    def _cmd_get(self, key: str) -> str | None:
        entry = self.server.data.get(key)
        if entry is None:
            return None
        if entry[0] != "string":
            raise ResponseError("WRONGTYPE Operation against a key holding the wrong kind of value")
        return entry[1]

    def _cmd_set(self, key: str, value: str) -> str:
        self.server.set(key, value)
        return "OK"

    def _cmd_del(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.server.data.pop(key, None) is not None:
                removed += 1
            self.server.expiry.pop(key, None)
        return removed

    def _cmd_type(self, key: str) -> str:
        entry = self.server.data.get(key)
        return entry[0] if entry else "none"

    def _cmd_ttl(self, key: str) -> int:
        if key not in self.server.data:
            return -2
        return self.server.expiry.get(key, -1)

    def _cmd_expire(self, key: str, seconds: str) -> int:
        if key not in self.server.data:
            return 0
        self.server.expiry[key] = int(seconds)
        return 1

    def _cmd_persist(self, key: str) -> int:
        return 1 if self.server.expiry.pop(key, None) is not None else 0

    def _cmd_rename(self, key: str, new_key: str) -> str:
        if key not in self.server.data:
            raise ResponseError("ERR no such key")
        self.server.data[new_key] = self.server.data.pop(key)
        if key in self.server.expiry:
            self.server.expiry[new_key] = self.server.expiry.pop(key)
        return "OK"

    def _cmd_flushdb(self) -> str:
        self.server.data.clear()
        self.server.expiry.clear()
        return "OK"

    def _cmd_scan(self, cursor: str, *options: str) -> list[Any]:
        pattern, count = "*", 10
        for index in range(0, len(options) - 1, 2):
            if options[index].upper() == "MATCH":
                pattern = options[index + 1]
            elif options[index].upper() == "COUNT":
                count = int(options[index + 1])
        names = sorted(self.server.data)
        start = int(cursor)
        window = names[start : start + count]
        following = start + count
        matched = [name for name in window if fnmatch.fnmatchcase(name, pattern)]
        return [str(following) if following < len(names) else "0", matched]

    def _cmd_memory(self, subcommand: str, key: str) -> int | None:
        entry = self.server.data.get(key)
        if entry is None:
            return None
        return 50 + len(str(entry[1]))

    def _cmd_object(self, subcommand: str, key: str) -> Any:
        if key not in self.server.data:
            return None
        return {"ENCODING": "embstr", "REFCOUNT": 1, "IDLETIME": 7}[subcommand.upper()]

    def _cmd_strlen(self, key: str) -> int:
        return len(self._cmd_get(key) or "")

    def _length(self, key: str) -> int:
        entry = self.server.data.get(key)
        return len(entry[1]) if entry else 0

    _cmd_llen = _cmd_scard = _cmd_zcard = _cmd_hlen = _cmd_xlen = _length

    def _cmd_lrange(self, key: str, start: str, stop: str) -> list[str]:
        values = list(self.server.data[key][1])
        return values[int(start) : int(stop) + 1]

    def _cmd_srandmember(self, key: str, count: str) -> list[str]:
        return sorted(self.server.data[key][1])[: int(count)]

    def _cmd_zrange(self, key: str, start: str, stop: str, *flags: str) -> list[str]:
        ordered = sorted(self.server.data[key][1].items(), key=lambda item: (item[1], item[0]))
        flat: list[str] = []
        for member, score in ordered[int(start) : int(stop) + 1]:
            flat.extend([member, str(score)])
        return flat

    def _cmd_hgetall(self, key: str) -> list[str]:
        flat: list[str] = []
        for name, value in self.server.data[key][1].items():
            flat.extend([name, value])
        return flat

    def _cmd_xrange(self, key: str, start: str, end: str, _count: str, limit: str) -> list[Any]:
        entries = []
        for entry_id, payload in self.server.data[key][1][: int(limit)]:
            flat: list[str] = []
            for name, value in payload.items():
                flat.extend([name, value])
            entries.append([entry_id, flat])
        return entries

    def _cmd_info(self, section: str = "default") -> str:
        if section in self.server.failing_commands:
            raise ResponseError(f"ERR section {section} unavailable")
        return self.server.info.get(section, "")


@pytest.fixture
def fake_server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def client_factory(fake_server: FakeServer):
    def _factory(profile: ConnectionProfile, settings: ConnectionSettings) -> FakeRedis:
        client = FakeRedis(fake_server, profile)
        fake_server.clients.append(client)
        return client

    return _factory


@pytest.fixture
def fast_settings() -> ConnectionSettings:
    return ConnectionSettings(backoff_step=0, backoff_cap=0, max_connect_attempts=3)


@pytest.fixture
def local_profile() -> ConnectionProfile:
    return ConnectionProfile(id="local", name="Local Redis")


@pytest.fixture
def registry(client_factory, fast_settings, local_profile) -> ConnectionRegistry:
    return ConnectionRegistry([local_profile], settings=fast_settings, client_factory=client_factory)
