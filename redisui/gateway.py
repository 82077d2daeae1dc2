"""Ad-hoc command execution for the command pad."""

from __future__ import annotations

import logging
import time
from collections import deque
from datetime import datetime, timezone

from redis.exceptions import RedisError

from .connections import ConnectionRegistry
from .models import (
    ArrayReply,
    CommandOutcome,
    ErrorReply,
    IntegerReply,
    NilReply,
    Reply,
    StatusReply,
    TextReply,
)

LOG = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50

# Simple-string replies cannot be told apart from bulk strings once decoded;
# these are the ones the server sends as status lines.
_STATUS_REPLIES = frozenset({"OK", "PONG", "QUEUED", "RESET"})

# Commands that turn a pooled connection into a push stream.
_UNSUPPORTED_COMMANDS = frozenset({"SUBSCRIBE", "PSUBSCRIBE", "SSUBSCRIBE", "MONITOR", "SYNC", "PSYNC"})

# Commands that change state of the pooled connection, which the inspector and
# metrics reporter share. Switch databases through the profile instead.
_STATEFUL_COMMANDS = frozenset(
    {"SELECT", "MULTI", "EXEC", "DISCARD", "WATCH", "UNWATCH", "AUTH", "HELLO", "RESET", "READONLY", "READWRITE", "QUIT"}
)
_STATEFUL_SUBCOMMANDS = {"CLIENT": frozenset({"REPLY", "TRACKING"})}


class CommandGatewayError(RuntimeError):
    """Raised when a command cannot be forwarded at all."""


class CommandGateway:
    """Forwards raw commands to registry sessions and keeps a bounded history."""

    def __init__(self, registry: ConnectionRegistry, *, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1.")
        self._registry = registry
        self._history_limit = history_limit
        self._history: dict[str, deque[CommandOutcome]] = {}

    async def execute(self, connection_id: str, raw_command: str) -> CommandOutcome:
        """Run ``raw_command`` on the connection's session.

        Server-side failures are returned as an ``ErrorReply`` in the outcome.
        Only an empty command or a missing session raise.
        """

        tokens = tokenize(raw_command)
        if not tokens:
            raise CommandGatewayError("Provide a command to execute.")
        session = self._registry.lookup(connection_id)
        issued_at = datetime.now(tz=timezone.utc)
        started = time.perf_counter()
        name = tokens[0].upper()
        refusal = _refusal(tokens)
        if refusal is not None:
            reply: Reply = ErrorReply(refusal)
        else:
            try:
                reply = to_reply(await session.execute_command(*tokens))
            except RedisError as exc:
                LOG.debug("Command failed", extra={"connection_id": connection_id, "command": name, "error": str(exc)})
                reply = ErrorReply(str(exc))
        elapsed_ms = (time.perf_counter() - started) * 1000
        outcome = CommandOutcome(
            connection_id=connection_id,
            command=raw_command.strip(),
            reply=reply,
            elapsed_ms=elapsed_ms,
            issued_at=issued_at,
        )
        self._record(outcome)
        return outcome

    def history(self, connection_id: str, limit: int | None = None) -> tuple[CommandOutcome, ...]:
        """Outcomes for the connection, most recent first."""

        entries = tuple(self._history.get(connection_id, ()))
        if limit is not None:
            return entries[: max(limit, 0)]
        return entries

    def clear_history(self, connection_id: str) -> None:
        self._history.pop(connection_id, None)

    def _record(self, outcome: CommandOutcome) -> None:
        entries = self._history.get(outcome.connection_id)
        if entries is None:
            entries = self._history[outcome.connection_id] = deque(maxlen=self._history_limit)
        entries.appendleft(outcome)


def _refusal(tokens: list[str]) -> str | None:
    name = tokens[0].upper()
    if name in _UNSUPPORTED_COMMANDS:
        return f"{name} is not supported in the console"
    if name in _STATEFUL_COMMANDS:
        return f"{name} changes connection state and is not supported in the console"
    subcommands = _STATEFUL_SUBCOMMANDS.get(name)
    if subcommands and len(tokens) > 1 and tokens[1].upper() in subcommands:
        return f"{name} {tokens[1].upper()} changes connection state and is not supported in the console"
    return None


def tokenize(raw_command: str) -> list[str]:
    """Split on whitespace; quoting and escapes are not interpreted."""

    return raw_command.split()


def to_reply(value: object, *, top_level: bool = True) -> Reply:
    """Translate a raw client reply into the tagged ``Reply`` variant."""

    if value is None:
        return NilReply()
    if isinstance(value, Exception):
        return ErrorReply(str(value))
    if isinstance(value, bool):
        return IntegerReply(int(value))
    if isinstance(value, int):
        return IntegerReply(value)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    if isinstance(value, str):
        if top_level and value in _STATUS_REPLIES:
            return StatusReply(value)
        return TextReply(value)
    if isinstance(value, dict):
        items: list[Reply] = []
        for key, entry in value.items():
            items.append(to_reply(key, top_level=False))
            items.append(to_reply(entry, top_level=False))
        return ArrayReply(tuple(items))
    if isinstance(value, (list, tuple, set, frozenset)):
        return ArrayReply(tuple(to_reply(item, top_level=False) for item in value))
    return TextReply(str(value))


__all__ = [
    "CommandGateway",
    "CommandGatewayError",
    "DEFAULT_HISTORY_LIMIT",
    "to_reply",
    "tokenize",
]
