"""Key listing, detail and mutation helpers layered on registry sessions."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Callable, Iterable, Sequence

from redis.asyncio import Redis

from .connections import ConnectionRegistry, run_batch
from .models import DataType, KeyDetails, KeyMetadata, KeyPage, KeySummary

LOG = logging.getLogger(__name__)

SORT_FIELDS = ("name", "type", "ttl", "size")
SORT_ORDERS = ("asc", "desc")

_SORT_KEYS: dict[str, Callable[[KeySummary], tuple[object, str]]] = {
    "name": lambda summary: (summary.name, summary.name),
    "type": lambda summary: (summary.data_type.value, summary.name),
    "ttl": lambda summary: (summary.ttl, summary.name),
    "size": lambda summary: (summary.size_bytes if summary.size_bytes is not None else -1, summary.name),
}

_LENGTH_COMMANDS: dict[DataType, str] = {
    DataType.STRING: "STRLEN",
    DataType.LIST: "LLEN",
    DataType.SET: "SCARD",
    DataType.ZSET: "ZCARD",
    DataType.HASH: "HLEN",
    DataType.STREAM: "XLEN",
}

_VALUE_COMMANDS: dict[DataType, Callable[[str, int], tuple[object, ...]]] = {
    DataType.STRING: lambda key, limit: ("GET", key),
    DataType.LIST: lambda key, limit: ("LRANGE", key, 0, limit - 1),
    DataType.SET: lambda key, limit: ("SRANDMEMBER", key, limit),
    DataType.ZSET: lambda key, limit: ("ZRANGE", key, 0, limit - 1, "WITHSCORES"),
    DataType.HASH: lambda key, limit: ("HGETALL", key),
    DataType.STREAM: lambda key, limit: ("XRANGE", key, "-", "+", "COUNT", limit),
}

_METADATA_COMMANDS: tuple[tuple[object, ...], ...] = (
    ("OBJECT", "ENCODING"),
    ("OBJECT", "REFCOUNT"),
    ("OBJECT", "IDLETIME"),
    ("MEMORY", "USAGE"),
)


class KeyInspector:
    """Read and edit keys of a registered connection."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        *,
        page_size: int = 50,
        scan_count: int = 500,
        value_limit: int = 1000,
    ) -> None:
        self._registry = registry
        self._page_size = page_size
        self._scan_count = scan_count
        self._value_limit = value_limit

    async def list_keys(
        self,
        connection_id: str,
        pattern: str = "*",
        *,
        page: int = 1,
        page_size: int | None = None,
        sort_by: str = "name",
        sort_order: str = "asc",
        data_type: DataType | None = None,
        with_sizes: bool = False,
    ) -> KeyPage:
        """Return one page of keys matching the glob ``pattern``.

        Every matching key is probed for type and TTL before sorting and
        paginating, so the cost grows with the size of the match set.
        """

        size = self._page_size if page_size is None else page_size
        if page < 1:
            raise ValueError("Page numbers start at 1.")
        if size < 1:
            raise ValueError("Page size must be at least 1.")
        if sort_by not in _SORT_KEYS:
            raise ValueError(f"Cannot sort by '{sort_by}'; expected one of {', '.join(SORT_FIELDS)}.")
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"Sort order must be 'asc' or 'desc', not '{sort_order}'.")
        session = self._registry.lookup(connection_id)
        names = await self._scan(session, pattern or "*")
        summaries = await self._summaries(session, names, with_sizes=with_sizes or sort_by == "size")
        if data_type is not None:
            summaries = [summary for summary in summaries if summary.data_type is data_type]
        summaries.sort(key=_SORT_KEYS[sort_by], reverse=sort_order == "desc")
        start = (page - 1) * size
        return KeyPage(
            items=tuple(summaries[start : start + size]),
            total=len(summaries),
            page=page,
            page_size=size,
        )

    async def key_details(self, connection_id: str, name: str) -> KeyDetails | None:
        """Fetch type, TTL, value and metadata; ``None`` when the key does not exist."""

        session = self._registry.lookup(connection_id)
        raw_type, ttl = await run_batch(session, [("TYPE", name), ("TTL", name)])
        if isinstance(raw_type, Exception):
            raise raw_type
        if str(raw_type) == "none":
            return None
        data_type = DataType.parse(raw_type)
        commands: list[tuple[object, ...]] = []
        length_command = _LENGTH_COMMANDS.get(data_type)
        value_command = _VALUE_COMMANDS.get(data_type)
        if length_command and value_command:
            commands.append((length_command, name))
            commands.append(value_command(name, self._value_limit))
        commands.extend((*command, name) for command in _METADATA_COMMANDS)
        results = await run_batch(session, commands)
        length: int | None = None
        value: object = None
        if length_command and value_command:
            raw_length, raw_value = results[0], results[1]
            results = results[2:]
            length = _optional_int(raw_length)
            if isinstance(raw_value, Exception):
                raise raw_value
            value = _shape_value(data_type, raw_value, self._value_limit)
        encoding, ref_count, idle, memory = results
        metadata = KeyMetadata(
            encoding=None if isinstance(encoding, Exception) or encoding is None else str(encoding),
            ref_count=_optional_int(ref_count),
            idle_seconds=_optional_int(idle),
            memory_usage=_optional_int(memory),
        )
        truncated = data_type is not DataType.STRING and length is not None and length > self._value_limit
        remaining = _optional_int(ttl)
        return KeyDetails(
            name=name,
            data_type=data_type,
            ttl=remaining if remaining is not None else -1,
            value=value,
            length=length,
            metadata=metadata,
            truncated=truncated,
        )

    async def delete_keys(self, connection_id: str, names: Iterable[str]) -> int:
        """Delete the keys in one round trip; returns how many actually existed."""

        session = self._registry.lookup(connection_id)
        unique = sorted(set(names))
        if not unique:
            return 0
        deleted = int(await session.execute_command("DEL", *unique))
        LOG.info("Deleted keys", extra={"connection_id": connection_id, "requested": len(unique), "deleted": deleted})
        return deleted

    async def rename_key(self, connection_id: str, name: str, new_name: str) -> None:
        if not new_name:
            raise ValueError("Provide a new key name.")
        session = self._registry.lookup(connection_id)
        await session.execute_command("RENAME", name, new_name)

    async def set_ttl(self, connection_id: str, name: str, seconds: int) -> bool:
        """Expire the key after ``seconds``; a negative value removes the expiry."""

        session = self._registry.lookup(connection_id)
        if seconds < 0:
            result = await session.execute_command("PERSIST", name)
        else:
            result = await session.execute_command("EXPIRE", name, seconds)
        return int(result) == 1

    async def flush_database(self, connection_id: str) -> None:
        session = self._registry.lookup(connection_id)
        await session.execute_command("FLUSHDB")
        LOG.warning("Flushed database", extra={"connection_id": connection_id})

    async def type_counts(self, connection_id: str, pattern: str = "*") -> dict[DataType, int]:
        session = self._registry.lookup(connection_id)
        names = await self._scan(session, pattern or "*")
        summaries = await self._summaries(session, names, with_sizes=False)
        return dict(Counter(summary.data_type for summary in summaries))

    async def _scan(self, session: Redis, pattern: str) -> list[str]:
        names: set[str] = set()
        cursor: object = 0
        while True:
            cursor, batch = await session.execute_command("SCAN", cursor, "MATCH", pattern, "COUNT", self._scan_count)
            names.update(str(name) for name in batch)
            if int(cursor) == 0:
                break
        return sorted(names)

    async def _summaries(self, session: Redis, names: Sequence[str], *, with_sizes: bool) -> list[KeySummary]:
        summaries: list[KeySummary] = []
        chunk = self._scan_count
        for offset in range(0, len(names), chunk):
            batch = names[offset : offset + chunk]
            commands: list[tuple[object, ...]] = []
            for name in batch:
                commands.append(("TYPE", name))
                commands.append(("TTL", name))
                if with_sizes:
                    commands.append(("MEMORY", "USAGE", name))
            results = await run_batch(session, commands)
            stride = 3 if with_sizes else 2
            for index, name in enumerate(batch):
                row = results[index * stride : (index + 1) * stride]
                ttl = _optional_int(row[1])
                if ttl == -2:
                    # Expired or deleted between SCAN and the probe.
                    continue
                raw_type = row[0]
                summaries.append(
                    KeySummary(
                        name=name,
                        data_type=DataType.NONE if isinstance(raw_type, Exception) else DataType.parse(raw_type),
                        ttl=ttl if ttl is not None else -1,
                        size_bytes=_optional_int(row[2]) if with_sizes else None,
                    )
                )
        return summaries


def _optional_int(value: object) -> int | None:
    if value is None or isinstance(value, Exception):
        return None
    try:
        return int(value)  # type: ignore[call-overload]
    except (TypeError, ValueError):
        return None


def _pairs(values: Sequence[object]) -> list[tuple[object, object]]:
    return list(zip(values[::2], values[1::2]))


def _shape_value(data_type: DataType, raw: object, limit: int) -> object:
    if data_type is DataType.STRING:
        return raw
    if raw is None:
        return ()
    if data_type is DataType.LIST:
        return tuple(raw)  # type: ignore[arg-type]
    if data_type is DataType.SET:
        return tuple(sorted(str(member) for member in raw))  # type: ignore[union-attr]
    if data_type is DataType.ZSET:
        return tuple((member, float(score)) for member, score in _pairs(list(raw)))  # type: ignore[arg-type]
    if data_type is DataType.HASH:
        if isinstance(raw, dict):
            fields = list(raw.items())
        else:
            fields = _pairs(list(raw))  # type: ignore[arg-type]
        return dict(fields[:limit])
    if data_type is DataType.STREAM:
        entries = []
        for entry_id, payload in raw:  # type: ignore[union-attr]
            entries.append((entry_id, dict(_pairs(list(payload or ())))))
        return tuple(entries)
    return raw


__all__ = ["KeyInspector", "SORT_FIELDS", "SORT_ORDERS"]
