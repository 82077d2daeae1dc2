"""Connection registry mapping console connection ids to live Redis sessions."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Sequence

from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import AbstractBackoff
from redis.exceptions import AuthenticationError, RedisError

from .config import ConnectionSettings
from .models import ConnectionProfile, ConnectionStatus

LOG = logging.getLogger(__name__)

ClientFactory = Callable[[ConnectionProfile, ConnectionSettings], Redis]


class RegistryError(RuntimeError):
    """Base class for registry failures surfaced to callers."""


class ConnectError(RegistryError):
    """Raised when a session cannot be established (network, auth, superseded)."""

    def __init__(self, connection_id: str, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.connection_id = connection_id
        self.cause = cause


class NotConnectedError(RegistryError):
    """Raised when an operation targets an id without a live session."""

    def __init__(self, connection_id: str) -> None:
        super().__init__(f"Connection '{connection_id}' is not connected.")
        self.connection_id = connection_id


class LinearBackoff(AbstractBackoff):
    """Delay grows by ``step`` seconds per failure, capped at ``cap`` seconds."""

    def __init__(self, step: float = 0.05, cap: float = 0.5) -> None:
        self._step = step
        self._cap = cap

    def compute(self, failures: int) -> float:
        return min(max(failures, 0) * self._step, self._cap)


def create_client(profile: ConnectionProfile, settings: ConnectionSettings) -> Redis:
    """Build an unconnected asyncio client for the profile."""

    client = Redis(
        host=profile.host,
        port=profile.port,
        db=profile.db,
        username=profile.username,
        password=profile.password,
        socket_connect_timeout=settings.connect_timeout,
        socket_timeout=settings.command_timeout,
        retry=Retry(LinearBackoff(settings.backoff_step, settings.backoff_cap), settings.command_retries),
        decode_responses=True,
        encoding_errors="replace",
    )
    # Replies stay in their wire shape; callers translate them.
    client.response_callbacks.clear()
    return client


class ConnectionRegistry:
    """Owns every live session, keyed by the caller-chosen connection id."""

    def __init__(
        self,
        profiles: Iterable[ConnectionProfile] = (),
        *,
        settings: ConnectionSettings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._settings = settings or ConnectionSettings()
        self._client_factory = client_factory or create_client
        self._backoff = LinearBackoff(self._settings.backoff_step, self._settings.backoff_cap)
        self._profiles: dict[str, ConnectionProfile] = {profile.id: profile for profile in profiles}
        self._sessions: dict[str, Redis] = {}
        self._connected_at: dict[str, datetime] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._pending: dict[str, asyncio.Task[Redis]] = {}
        self._generations: dict[str, int] = {}

    @property
    def settings(self) -> ConnectionSettings:
        return self._settings

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        """Known profiles, connected or not."""

        return tuple(self._profiles.values())

    def profile(self, connection_id: str) -> ConnectionProfile | None:
        return self._profiles.get(connection_id)

    def register_profile(self, profile: ConnectionProfile) -> None:
        """Add or replace a profile; a live session keeps running until reconnect."""

        self._profiles[profile.id] = profile

    async def remove_profile(self, connection_id: str) -> None:
        await self.disconnect(connection_id)
        self._profiles.pop(connection_id, None)
        lock = self._locks.get(connection_id)
        if connection_id not in self._pending and (lock is None or not lock.locked()):
            self._locks.pop(connection_id, None)
            self._generations.pop(connection_id, None)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self._sessions

    def list_connections(self) -> tuple[ConnectionStatus, ...]:
        return tuple(self._status_for(profile) for profile in self._profiles.values())

    def lookup(self, connection_id: str) -> Redis:
        """Return the live session for ``connection_id`` or raise ``NotConnectedError``."""

        session = self._sessions.get(connection_id)
        if session is None:
            raise NotConnectedError(connection_id)
        return session

    async def connect(self, profile: ConnectionProfile) -> ConnectionStatus:
        """Open a session for the profile, replacing any existing one for its id.

        Any connect still retrying for the same id is cancelled first and fails
        with ``ConnectError``; only the latest call ends up owning a session.
        """

        connection_id = profile.id
        generation = self._supersede(connection_id)
        async with self._lock_for(connection_id):
            previous = self._sessions.pop(connection_id, None)
            self._connected_at.pop(connection_id, None)
            if previous is not None:
                await self._close_quietly(connection_id, previous)
            if self._generations.get(connection_id) != generation:
                raise ConnectError(connection_id, f"Connect to '{profile.name}' was superseded.")
            self._profiles[connection_id] = profile
            task = asyncio.create_task(self._establish(profile), name=f"redisui-connect-{connection_id}")
            self._pending[connection_id] = task
            try:
                await asyncio.wait({task})
            except asyncio.CancelledError:
                task.cancel()
                raise
            finally:
                if self._pending.get(connection_id) is task:
                    del self._pending[connection_id]
            if task.cancelled():
                raise ConnectError(connection_id, f"Connect to '{profile.name}' was superseded.")
            session = task.result()
            self._sessions[connection_id] = session
            self._connected_at[connection_id] = datetime.now(tz=timezone.utc)
        LOG.info("Connected", extra={"connection_id": connection_id, "address": profile.address})
        return self._status_for(profile)

    async def disconnect(self, connection_id: str) -> None:
        """Close and forget the session for ``connection_id``; unknown ids are a no-op."""

        self._supersede(connection_id)
        async with self._lock_for(connection_id):
            session = self._sessions.pop(connection_id, None)
            self._connected_at.pop(connection_id, None)
            if session is None:
                return
            await self._close_quietly(connection_id, session)
        LOG.info("Disconnected", extra={"connection_id": connection_id})

    async def test_connection(self, profile: ConnectionProfile) -> float:
        """Ping the profile once with a throwaway session; return latency in ms."""

        client = self._client_factory(profile, self._settings)
        started = time.perf_counter()
        try:
            await client.ping()
        except (RedisError, OSError) as exc:
            raise ConnectError(profile.id, f"Failed to reach '{profile.name}' ({profile.address}): {exc}", exc) from exc
        finally:
            await self._close_quietly(profile.id, client)
        return (time.perf_counter() - started) * 1000

    async def close_all(self) -> None:
        for connection_id in set(self._pending) | set(self._sessions):
            await self.disconnect(connection_id)

    async def _establish(self, profile: ConnectionProfile) -> Redis:
        limit = self._settings.max_connect_attempts
        attempt = 0
        while True:
            attempt += 1
            client = self._client_factory(profile, self._settings)
            try:
                await client.ping()
            except AuthenticationError as exc:
                await self._close_quietly(profile.id, client)
                raise ConnectError(profile.id, f"Authentication failed for '{profile.name}': {exc}", exc) from exc
            except (RedisError, OSError) as exc:
                await self._close_quietly(profile.id, client)
                if limit and attempt >= limit:
                    raise ConnectError(
                        profile.id,
                        f"Failed to connect to '{profile.name}' ({profile.address}) after {attempt} attempt(s): {exc}",
                        exc,
                    ) from exc
                delay = self._backoff.compute(attempt)
                LOG.debug(
                    "Connect attempt failed, retrying",
                    extra={"connection_id": profile.id, "attempt": attempt, "delay": delay, "error": str(exc)},
                )
                await asyncio.sleep(delay)
                continue
            except asyncio.CancelledError:
                await self._close_quietly(profile.id, client)
                raise
            return client

    def _supersede(self, connection_id: str) -> int:
        generation = self._generations.get(connection_id, 0) + 1
        self._generations[connection_id] = generation
        task = self._pending.get(connection_id)
        if task is not None and not task.done():
            task.cancel()
        return generation

    def _lock_for(self, connection_id: str) -> asyncio.Lock:
        lock = self._locks.get(connection_id)
        if lock is None:
            lock = self._locks[connection_id] = asyncio.Lock()
        return lock

    def _status_for(self, profile: ConnectionProfile) -> ConnectionStatus:
        task = self._pending.get(profile.id)
        return ConnectionStatus(
            profile=profile,
            connected=profile.id in self._sessions,
            connected_at=self._connected_at.get(profile.id),
            connecting=task is not None and not task.done(),
        )

    async def _close_quietly(self, connection_id: str, client: Redis) -> None:
        try:
            await client.aclose()
        except Exception:  # best effort cleanup
            LOG.warning("Failed to close Redis session", extra={"connection_id": connection_id}, exc_info=True)


async def run_batch(session: Redis, commands: Sequence[tuple[object, ...]]) -> list[object]:
    """Send commands in one non-transactional pipeline; errors come back in place."""

    if not commands:
        return []
    async with session.pipeline(transaction=False) as pipe:
        for command in commands:
            pipe.execute_command(*command)
        return await pipe.execute(raise_on_error=False)


__all__ = [
    "ClientFactory",
    "ConnectError",
    "ConnectionRegistry",
    "LinearBackoff",
    "NotConnectedError",
    "RegistryError",
    "create_client",
    "run_batch",
]
