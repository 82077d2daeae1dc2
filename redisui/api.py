"""Request/response boundary over the registry, gateway, inspector and metrics."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Iterable

from pydantic import BaseModel, ConfigDict
from redis.exceptions import RedisError

from .config import AppConfig, ConnectionProfileConfig
from .connections import ClientFactory, ConnectionRegistry, RegistryError
from .gateway import CommandGateway, CommandGatewayError
from .inspector import KeyInspector
from .metrics import MetricsReporter
from .models import ConnectionProfile, DataType

LOG = logging.getLogger(__name__)

ConfigWriter = Callable[[AppConfig], None]

_EXPECTED_ERRORS = (RegistryError, CommandGatewayError, ValueError, RedisError)


class ApiResponse(BaseModel):
    """Envelope returned by every console operation."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    success: bool
    data: Any = None
    error: str | None = None
    message: str | None = None

    @classmethod
    def ok(cls, data: Any = None, message: str | None = None) -> ApiResponse:
        return cls(success=True, data=data, message=message)

    @classmethod
    def fail(cls, error: str, *, data: Any = None) -> ApiResponse:
        return cls(success=False, data=data, error=error)


class RedisConsoleApi:
    """Single entry point the console talks to.

    Operations never raise for expected failures (unknown ids, network or
    server errors, invalid arguments); they answer ``success=False`` instead.
    Profile mutations are written through ``persist`` when one is given.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        client_factory: ClientFactory | None = None,
        persist: ConfigWriter | None = None,
    ) -> None:
        self._config = config or AppConfig()
        self._persist = persist
        browser = self._config.browser
        self._registry = ConnectionRegistry(
            (entry.to_profile() for entry in self._config.profiles),
            settings=self._config.connection,
            client_factory=client_factory,
        )
        self._gateway = CommandGateway(self._registry, history_limit=browser.history_limit)
        self._inspector = KeyInspector(
            self._registry,
            page_size=browser.page_size,
            scan_count=browser.scan_count,
            value_limit=browser.value_limit,
        )
        self._metrics = MetricsReporter(self._registry)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    @property
    def profiles(self) -> tuple[ConnectionProfile, ...]:
        return self._registry.profiles

    async def connect(self, target: ConnectionProfile | str) -> ApiResponse:
        """Connect a saved profile (by id) or an ad-hoc profile."""

        if isinstance(target, str):
            profile = self._registry.profile(target)
            if profile is None:
                return ApiResponse.fail(f"Unknown connection '{target}'.")
        else:
            profile = target
        return await self._run(
            "connect",
            self._registry.connect(profile),
            message=f"Connected to {profile.name}.",
        )

    async def disconnect(self, connection_id: str) -> ApiResponse:
        return await self._run("disconnect", self._registry.disconnect(connection_id), message="Disconnected.")

    async def test_connection(self, profile: ConnectionProfile) -> ApiResponse:
        response = await self._run("test_connection", self._registry.test_connection(profile))
        if response.success:
            return ApiResponse.ok(response.data, f"Reached {profile.address} in {response.data:.1f} ms.")
        return response

    def list_connections(self) -> ApiResponse:
        return ApiResponse.ok(self._registry.list_connections())

    async def save_connection(self, profile: ConnectionProfile) -> ApiResponse:
        """Add a new saved profile; an existing id is rejected."""

        if self._registry.profile(profile.id) is not None:
            return ApiResponse.fail(f"Connection '{profile.id}' already exists.")
        self._registry.register_profile(profile)
        self._store(self._config.with_profile(ConnectionProfileConfig.from_profile(profile)))
        return ApiResponse.ok(profile, f"Saved {profile.name}.")

    async def update_connection(self, profile: ConnectionProfile) -> ApiResponse:
        """Replace a saved profile; a live session is reopened with the new settings."""

        if self._registry.profile(profile.id) is None:
            return ApiResponse.fail(f"Unknown connection '{profile.id}'.")
        self._registry.register_profile(profile)
        self._store(self._config.with_profile(ConnectionProfileConfig.from_profile(profile)))
        if self._registry.is_connected(profile.id):
            response = await self._run("update_connection", self._registry.connect(profile))
            if not response.success:
                return response
        return ApiResponse.ok(profile, f"Updated {profile.name}.")

    async def delete_connection(self, connection_id: str) -> ApiResponse:
        if self._registry.profile(connection_id) is None:
            return ApiResponse.fail(f"Unknown connection '{connection_id}'.")
        response = await self._run("delete_connection", self._registry.remove_profile(connection_id))
        if not response.success:
            return response
        self._gateway.clear_history(connection_id)
        self._store(self._config.without_profile(connection_id))
        return ApiResponse.ok(None, "Connection removed.")

    def set_active_connection(self, connection_id: str | None) -> ApiResponse:
        """Remember which profile the console reopens on the next start."""

        if connection_id is not None and self._registry.profile(connection_id) is None:
            return ApiResponse.fail(f"Unknown connection '{connection_id}'.")
        if self._config.active_profile != connection_id:
            self._store(self._config.with_active_profile(connection_id))
        return ApiResponse.ok(connection_id)

    async def get_server_info(self, connection_id: str) -> ApiResponse:
        return await self._run("get_server_info", self._metrics.snapshot(connection_id))

    async def get_dashboard_stats(self, connection_id: str) -> ApiResponse:
        async def _collect() -> object:
            by_type = await self._inspector.type_counts(connection_id)
            return await self._metrics.dashboard(connection_id, by_type)

        return await self._run("get_dashboard_stats", _collect())

    async def get_keys(
        self,
        connection_id: str,
        pattern: str = "*",
        *,
        page: int = 1,
        page_size: int | None = None,
        sort_by: str = "name",
        sort_order: str = "asc",
        data_type: DataType | str | None = None,
        with_sizes: bool = False,
    ) -> ApiResponse:
        async def _list() -> object:
            wanted = DataType(data_type) if data_type else None
            return await self._inspector.list_keys(
                connection_id,
                pattern,
                page=page,
                page_size=page_size,
                sort_by=sort_by,
                sort_order=sort_order,
                data_type=wanted,
                with_sizes=with_sizes,
            )

        return await self._run("get_keys", _list())

    async def get_key_details(self, connection_id: str, name: str) -> ApiResponse:
        response = await self._run("get_key_details", self._inspector.key_details(connection_id, name))
        if response.success and response.data is None:
            return ApiResponse.ok(None, f"Key '{name}' not found.")
        return response

    async def delete_key(self, connection_id: str, name: str) -> ApiResponse:
        response = await self.delete_keys(connection_id, [name])
        if response.success and response.data == 0:
            return ApiResponse.ok(0, f"Key '{name}' did not exist.")
        return response

    async def delete_keys(self, connection_id: str, names: Iterable[str]) -> ApiResponse:
        response = await self._run("delete_keys", self._inspector.delete_keys(connection_id, names))
        if response.success:
            return ApiResponse.ok(response.data, f"Deleted {response.data} key(s).")
        return response

    async def rename_key(self, connection_id: str, name: str, new_name: str) -> ApiResponse:
        return await self._run(
            "rename_key",
            self._inspector.rename_key(connection_id, name, new_name),
            message=f"Renamed '{name}' to '{new_name}'.",
        )

    async def set_key_ttl(self, connection_id: str, name: str, seconds: int) -> ApiResponse:
        response = await self._run("set_key_ttl", self._inspector.set_ttl(connection_id, name, seconds))
        if response.success and not response.data:
            return ApiResponse.ok(False, f"TTL of '{name}' unchanged.")
        return response

    async def flush_database(self, connection_id: str) -> ApiResponse:
        return await self._run(
            "flush_database",
            self._inspector.flush_database(connection_id),
            message="Database flushed.",
        )

    async def execute_command(self, connection_id: str, raw_command: str) -> ApiResponse:
        """Run a raw command; a server error reply fails the response but keeps the outcome."""

        response = await self._run("execute_command", self._gateway.execute(connection_id, raw_command))
        if response.success and response.data.error is not None:
            return ApiResponse.fail(response.data.error, data=response.data)
        return response

    def get_command_history(self, connection_id: str, limit: int | None = None) -> ApiResponse:
        return ApiResponse.ok(self._gateway.history(connection_id, limit))

    async def aclose(self) -> None:
        await self._registry.close_all()

    def _store(self, config: AppConfig) -> None:
        self._config = config
        if self._persist is not None:
            self._persist(config)

    async def _run(self, operation: str, call: Awaitable[Any], *, message: str | None = None) -> ApiResponse:
        try:
            data = await call
        except _EXPECTED_ERRORS as exc:
            LOG.info("Request failed", extra={"operation": operation, "error": str(exc)})
            return ApiResponse.fail(str(exc))
        except Exception as exc:
            LOG.exception("Unexpected failure", extra={"operation": operation})
            return ApiResponse.fail(f"Unexpected error: {exc}")
        return ApiResponse.ok(data, message)


__all__ = ["ApiResponse", "ConfigWriter", "RedisConsoleApi"]
