"""Shared dataclasses used across the registry, gateway and inspector modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Union


@dataclass(frozen=True, slots=True)
class ConnectionProfile:
    """Saved shape of a connection: everything except the live session."""

    id: str
    name: str
    host: str = "localhost"
    port: int = 6379
    password: str | None = None
    username: str | None = None
    db: int = 0

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("Connection id must not be empty.")
        if not 1 <= self.port <= 65535:
            raise ValueError(f"Port {self.port} is outside 1-65535.")
        if self.db < 0:
            raise ValueError(f"Database index {self.db} must not be negative.")

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}/{self.db}"


@dataclass(frozen=True, slots=True)
class ConnectionStatus:
    """Registry view of a profile and whether it has a live session."""

    profile: ConnectionProfile
    connected: bool
    connected_at: datetime | None = None
    connecting: bool = False


class DataType(str, Enum):
    """Redis value types as reported by TYPE."""

    STRING = "string"
    LIST = "list"
    SET = "set"
    ZSET = "zset"
    HASH = "hash"
    STREAM = "stream"
    NONE = "none"

    @classmethod
    def parse(cls, value: object) -> "DataType":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NONE


@dataclass(frozen=True, slots=True)
class KeySummary:
    """One row of a key listing."""

    name: str
    data_type: DataType
    ttl: int = -1
    size_bytes: int | None = None


@dataclass(frozen=True, slots=True)
class KeyPage:
    """A sorted, paginated slice of a key listing."""

    items: tuple[KeySummary, ...]
    total: int
    page: int
    page_size: int

    @property
    def has_next(self) -> bool:
        return self.page * self.page_size < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


@dataclass(frozen=True, slots=True)
class KeyMetadata:
    """Best-effort object metadata; any field may be missing."""

    encoding: str | None = None
    ref_count: int | None = None
    idle_seconds: int | None = None
    memory_usage: int | None = None


@dataclass(frozen=True, slots=True)
class KeyDetails:
    """Type, TTL and value of a single key."""

    name: str
    data_type: DataType
    ttl: int
    value: object
    length: int | None = None
    metadata: KeyMetadata = field(default_factory=KeyMetadata)
    truncated: bool = False


@dataclass(frozen=True, slots=True)
class NilReply:
    """Null bulk string or null array."""

    def render(self) -> str:
        return "(nil)"

    def to_python(self) -> None:
        return None


@dataclass(frozen=True, slots=True)
class IntegerReply:
    value: int

    def render(self) -> str:
        return f"(integer) {self.value}"

    def to_python(self) -> int:
        return self.value


@dataclass(frozen=True, slots=True)
class TextReply:
    value: str

    def render(self) -> str:
        return f'"{self.value}"'

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class StatusReply:
    value: str

    def render(self) -> str:
        return self.value

    def to_python(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class ErrorReply:
    message: str

    def render(self) -> str:
        return f"(error) {self.message}"

    def to_python(self) -> dict[str, str]:
        return {"error": self.message}


@dataclass(frozen=True, slots=True)
class ArrayReply:
    items: tuple["Reply", ...] = ()

    def render(self) -> str:
        if not self.items:
            return "(empty array)"
        lines: list[str] = []
        width = len(str(len(self.items)))
        for index, item in enumerate(self.items, start=1):
            prefix = f"{index:>{width}}) "
            body = item.render().splitlines() or [""]
            lines.append(prefix + body[0])
            lines.extend(" " * len(prefix) + line for line in body[1:])
        return "\n".join(lines)

    def to_python(self) -> list[object]:
        return [item.to_python() for item in self.items]


Reply = Union[NilReply, IntegerReply, TextReply, StatusReply, ErrorReply, ArrayReply]


@dataclass(frozen=True, slots=True)
class CommandOutcome:
    """Immutable record of one executed command."""

    connection_id: str
    command: str
    reply: Reply
    elapsed_ms: float
    issued_at: datetime

    @property
    def error(self) -> str | None:
        if isinstance(self.reply, ErrorReply):
            return self.reply.message
        return None


@dataclass(frozen=True, slots=True)
class DatabaseStats:
    db: int
    keys: int = 0
    expires: int = 0
    avg_ttl: int = 0


@dataclass(frozen=True, slots=True)
class ServerSnapshot:
    """Typed view of the INFO sections the console displays."""

    version: str = ""
    mode: str = "standalone"
    role: str = "master"
    connected_clients: int = 0
    used_memory: int = 0
    used_memory_human: str = ""
    total_system_memory: int = 0
    max_memory: int = 0
    max_memory_human: str = ""
    keyspace_hits: int = 0
    keyspace_misses: int = 0
    total_connections_received: int = 0
    total_commands_processed: int = 0
    instantaneous_ops_per_sec: int = 0
    uptime_seconds: int = 0
    databases: tuple[DatabaseStats, ...] = ()

    @property
    def hit_rate(self) -> float:
        lookups = self.keyspace_hits + self.keyspace_misses
        if lookups == 0:
            return 0.0
        return self.keyspace_hits / lookups

    @property
    def total_keys(self) -> int:
        return sum(database.keys for database in self.databases)


@dataclass(frozen=True, slots=True)
class DashboardStats:
    """Aggregates shown on the console's overview."""

    total_keys: int
    total_memory: int
    connected_clients: int
    ops_per_second: int
    hit_rate: float
    keyspace_by_type: Mapping[DataType, int]


__all__ = [
    "ArrayReply",
    "CommandOutcome",
    "ConnectionProfile",
    "ConnectionStatus",
    "DashboardStats",
    "DataType",
    "DatabaseStats",
    "ErrorReply",
    "IntegerReply",
    "KeyDetails",
    "KeyMetadata",
    "KeyPage",
    "KeySummary",
    "NilReply",
    "Reply",
    "ServerSnapshot",
    "StatusReply",
    "TextReply",
]
