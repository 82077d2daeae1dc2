"""Console session manager: the active connection and its latest metrics."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from .api import ApiResponse, RedisConsoleApi
from .config import AppConfig, save_config
from .connections import ClientFactory
from .models import ConnectionProfile, DataType, ServerSnapshot

LOG = logging.getLogger(__name__)

SessionListener = Callable[["SessionState"], None]


@dataclass(frozen=True, slots=True)
class SessionState:
    """Current session snapshot (active connection + server metrics)."""

    profile: ConnectionProfile
    connected: bool
    refreshed_at: datetime
    status: str = "Connected"
    latency_ms: int | None = None
    snapshot: ServerSnapshot | None = None
    last_error: str | None = None


class SessionManager:
    """Tracks a single active connection for the Textual app."""

    def __init__(
        self,
        *,
        config: AppConfig,
        api: RedisConsoleApi | None = None,
        client_factory: ClientFactory | None = None,
        persist: bool = True,
    ) -> None:
        self._api = api or RedisConsoleApi(
            config,
            client_factory=client_factory,
            persist=save_config if persist else None,
        )
        self._listeners: set[SessionListener] = set()
        self._state: SessionState | None = None

    @property
    def api(self) -> RedisConsoleApi:
        return self._api

    @property
    def config(self) -> AppConfig:
        return self._api.config

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        """Profiles available in the current config."""

        return self._api.profiles

    @property
    def state(self) -> SessionState | None:
        return self._state

    @property
    def active_profile_id(self) -> str | None:
        """Id of the profile the session points at, connected or not."""

        if self._state:
            return self._state.profile.id
        return None

    @property
    def connected(self) -> bool:
        return bool(self._state and self._state.connected)

    async def connect(self, profile_id: str) -> SessionState:
        """Make ``profile_id`` the active connection, closing the previous one."""

        profile = self._profile_by_id(profile_id)
        previous = self._state
        if previous and previous.connected and previous.profile.id != profile.id:
            await self._api.disconnect(previous.profile.id)
        self._update_state(profile, connected=False, status="Connecting")
        started = time.perf_counter()
        response = await self._api.connect(profile.id)
        if not response.success:
            LOG.warning("Connect failed", extra={"profile": profile.id, "error": response.error})
            self._update_state(profile, connected=False, status="Connection failed", last_error=response.error)
            return self._state
        latency_ms = int((time.perf_counter() - started) * 1000)
        self._api.set_active_connection(profile.id)
        info = await self._api.get_server_info(profile.id)
        self._update_state(
            profile,
            connected=True,
            latency_ms=latency_ms,
            snapshot=info.data if info.success else None,
            last_error=info.error,
        )
        return self._state

    async def connect_active(self) -> SessionState | None:
        """Reopen the remembered profile, or the first one on a fresh config."""

        profiles = self.profiles
        if not profiles:
            return None
        active = self.config.active_profile
        if active is None or all(profile.id != active for profile in profiles):
            active = profiles[0].id
        return await self.connect(active)

    async def disconnect(self) -> None:
        if not self._state:
            return
        profile = self._state.profile
        await self._api.disconnect(profile.id)
        self._update_state(profile, connected=False, status="Disconnected")

    async def refresh(self) -> None:
        """Re-read server metrics for the active connection."""

        if not self.connected or not self._state:
            return
        profile = self._state.profile
        started = time.perf_counter()
        response = await self._api.get_server_info(profile.id)
        if not response.success:
            self._update_state(
                profile,
                connected=self._api.registry.is_connected(profile.id),
                status="Refresh failed",
                snapshot=self._state.snapshot,
                last_error=response.error,
            )
            return
        self._update_state(
            profile,
            connected=True,
            latency_ms=int((time.perf_counter() - started) * 1000),
            snapshot=response.data,
        )

    async def refresh_profile(self, profile_id: str) -> None:
        """Refresh metrics for the requested profile, switching if needed."""

        if self._state and self._state.profile.id == profile_id and self._state.connected:
            await self.refresh()
            return
        await self.connect(profile_id)

    async def run_command(self, raw_command: str) -> ApiResponse:
        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.execute_command(profile_id, raw_command)

    def command_history(self, limit: int | None = None) -> ApiResponse:
        if not self._state:
            return ApiResponse.ok(())
        return self._api.get_command_history(self._state.profile.id, limit)

    async def list_keys(
        self,
        pattern: str = "*",
        *,
        page: int = 1,
        sort_by: str = "name",
        sort_order: str = "asc",
        data_type: DataType | None = None,
        with_sizes: bool = False,
    ) -> ApiResponse:
        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.get_keys(
            profile_id,
            pattern,
            page=page,
            sort_by=sort_by,
            sort_order=sort_order,
            data_type=data_type,
            with_sizes=with_sizes,
        )

    async def key_details(self, name: str) -> ApiResponse:
        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.get_key_details(profile_id, name)

    async def delete_key(self, name: str) -> ApiResponse:
        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.delete_key(profile_id, name)

    async def delete_keys(self, names: Iterable[str]) -> ApiResponse:
        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.delete_keys(profile_id, names)

    async def dashboard(self) -> ApiResponse:
        """Overview totals plus key counts per type for the active connection."""

        profile_id = self._require_connection()
        if profile_id is None:
            return ApiResponse.fail("No active connection.")
        return await self._api.get_dashboard_stats(profile_id)

    async def test_profile(self, profile: ConnectionProfile) -> ApiResponse:
        return await self._api.test_connection(profile)

    async def save_profile(self, profile: ConnectionProfile) -> ApiResponse:
        """Add or update a saved profile; persisted immediately."""

        if any(existing.id == profile.id for existing in self.profiles):
            response = await self._api.update_connection(profile)
        else:
            response = await self._api.save_connection(profile)
        if response.success and self._state and self._state.profile.id == profile.id:
            self._update_state(
                profile,
                connected=self._api.registry.is_connected(profile.id),
                status=self._state.status,
                latency_ms=self._state.latency_ms,
                snapshot=self._state.snapshot,
            )
        return response

    async def delete_profile(self, profile_id: str) -> ApiResponse:
        response = await self._api.delete_connection(profile_id)
        if response.success and self._state and self._state.profile.id == profile_id:
            self._state = None
        return response

    async def close(self) -> None:
        await self._api.aclose()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Subscribe to session updates; returns an unsubscribe handle."""

        self._listeners.add(listener)
        if self._state:
            listener(self._state)

        def _unsubscribe() -> None:
            self._listeners.discard(listener)

        return _unsubscribe

    def _require_connection(self) -> str | None:
        if not self.connected or not self._state:
            return None
        return self._state.profile.id

    def _profile_by_id(self, profile_id: str) -> ConnectionProfile:
        for profile in self.profiles:
            if profile.id == profile_id:
                return profile
        raise ValueError(f"Profile '{profile_id}' not found.")

    def _update_state(
        self,
        profile: ConnectionProfile,
        *,
        connected: bool,
        status: str | None = None,
        latency_ms: int | None = None,
        snapshot: ServerSnapshot | None = None,
        last_error: str | None = None,
    ) -> None:
        self._state = SessionState(
            profile=profile,
            connected=connected,
            refreshed_at=datetime.now(tz=timezone.utc),
            status=status or ("Connected" if connected else "Disconnected"),
            latency_ms=latency_ms,
            snapshot=snapshot,
            last_error=last_error,
        )
        self._notify()

    def _notify(self) -> None:
        if not self._state:
            return
        for listener in tuple(self._listeners):
            listener(self._state)


__all__ = [
    "SessionListener",
    "SessionManager",
    "SessionState",
]
