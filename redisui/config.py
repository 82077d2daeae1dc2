"""App configuration loading helpers."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import tomllib

from pydantic import BaseModel, Field, ValidationError

from .models import ConnectionProfile

CONFIG_FILE = Path.home() / ".config" / "redisui" / "config.toml"

LOG = logging.getLogger(__name__)


class ConnectionSettings(BaseModel):
    """Connect-time retry policy and socket limits shared by every session."""

    connect_timeout: float = Field(default=3.0, gt=0)
    command_timeout: float | None = Field(default=10.0, gt=0)
    max_connect_attempts: int = Field(default=10, ge=0)
    backoff_step: float = Field(default=0.05, ge=0)
    backoff_cap: float = Field(default=0.5, ge=0)
    # Re-sends a command after a timeout; non-idempotent commands may apply twice.
    command_retries: int = Field(default=0, ge=0)


class BrowserSettings(BaseModel):
    """Limits applied by the key inspector and command history."""

    page_size: int = Field(default=50, ge=1)
    scan_count: int = Field(default=500, ge=1)
    value_limit: int = Field(default=1000, ge=1)
    history_limit: int = Field(default=50, ge=1)


class ConnectionProfileConfig(BaseModel):
    """Connection profile stored in config.toml."""

    id: str = Field(min_length=1)
    name: str
    host: str = "localhost"
    port: int = Field(default=6379, ge=1, le=65535)
    password: str | None = None
    username: str | None = None
    db: int = Field(default=0, ge=0)

    def to_profile(self) -> ConnectionProfile:
        return ConnectionProfile(
            id=self.id,
            name=self.name,
            host=self.host,
            port=self.port,
            password=self.password,
            username=self.username,
            db=self.db,
        )

    @classmethod
    def from_profile(cls, profile: ConnectionProfile) -> ConnectionProfileConfig:
        return cls(
            id=profile.id,
            name=profile.name,
            host=profile.host,
            port=profile.port,
            password=profile.password,
            username=profile.username,
            db=profile.db,
        )


class AppConfig(BaseModel):
    """Shape of the application configuration file."""

    theme: str = "dark"
    log_level: str = "WARNING"
    metrics_interval: float = Field(default=10.0, gt=0)
    profiles: list[ConnectionProfileConfig] = Field(default_factory=lambda: list(_default_profiles()))
    active_profile: str | None = None
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)
    browser: BrowserSettings = Field(default_factory=BrowserSettings)

    def profile(self, profile_id: str) -> ConnectionProfileConfig | None:
        for entry in self.profiles:
            if entry.id == profile_id:
                return entry
        return None

    def with_profile(self, profile: ConnectionProfileConfig) -> AppConfig:
        """Return a copy with the profile added, or replaced if its id exists."""

        if self.profile(profile.id) is not None:
            profiles = [profile if entry.id == profile.id else entry for entry in self.profiles]
        else:
            profiles = [*self.profiles, profile]
        return self.model_copy(update={"profiles": profiles})

    def without_profile(self, profile_id: str) -> AppConfig:
        """Return a copy with the profile removed (and unset if it was active)."""

        profiles = [entry for entry in self.profiles if entry.id != profile_id]
        active = None if self.active_profile == profile_id else self.active_profile
        return self.model_copy(update={"profiles": profiles, "active_profile": active})

    def with_active_profile(self, profile_id: str | None) -> AppConfig:
        """Return a copy with the active profile updated."""

        return self.model_copy(update={"active_profile": profile_id})


def load_config() -> AppConfig:
    """Load configuration from disk; fall back to defaults if missing."""

    try:
        data = _read_config_file()
    except FileNotFoundError:
        return AppConfig()
    except (tomllib.TOMLDecodeError, OSError):
        LOG.warning("Ignoring unreadable config file", extra={"path": str(CONFIG_FILE)})
        return AppConfig()

    profiles: list[ConnectionProfileConfig] | None = None
    profiles_data = data.get("profiles")
    if isinstance(profiles_data, list):
        profiles = []
        for entry in profiles_data:
            try:
                profiles.append(ConnectionProfileConfig(**entry))
            except ValidationError:
                LOG.warning("Skipping invalid connection profile", extra={"profile": entry.get("id")})

    try:
        connection = ConnectionSettings(**data.get("connection", {}))
    except ValidationError:
        connection = ConnectionSettings()
    try:
        browser = BrowserSettings(**data.get("browser", {}))
    except ValidationError:
        browser = BrowserSettings()

    defaults = AppConfig.model_fields
    return AppConfig(
        theme=data.get("theme", defaults["theme"].default),
        log_level=data.get("log_level", defaults["log_level"].default),
        metrics_interval=data.get("metrics_interval", defaults["metrics_interval"].default),
        profiles=profiles if profiles is not None else list(_default_profiles()),
        active_profile=data.get("active_profile"),
        connection=connection,
        browser=browser,
    )


def save_config(config: AppConfig) -> None:
    """Persist configuration to disk."""

    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    lines: list[str] = [
        f"theme = {_quote(config.theme)}",
        f"log_level = {_quote(config.log_level)}",
        f"metrics_interval = {config.metrics_interval}",
    ]
    if config.active_profile:
        lines.append(f"active_profile = {_quote(config.active_profile)}")
    if not config.profiles:
        lines.append("profiles = []")
    lines.append("")
    lines.append("[connection]")
    for name, value in config.connection.model_dump().items():
        if value is not None:
            lines.append(f"{name} = {value}")
    lines.append("")
    lines.append("[browser]")
    for name, value in config.browser.model_dump().items():
        lines.append(f"{name} = {value}")
    lines.append("")
    for profile in config.profiles:
        lines.append("[[profiles]]")
        lines.append(f"id = {_quote(profile.id)}")
        lines.append(f"name = {_quote(profile.name)}")
        lines.append(f"host = {_quote(profile.host)}")
        lines.append(f"port = {profile.port}")
        lines.append(f"db = {profile.db}")
        if profile.username:
            lines.append(f"username = {_quote(profile.username)}")
        if profile.password:
            lines.append(f"password = {_quote(profile.password)}")
        lines.append("")
    CONFIG_FILE.write_text("\n".join(lines) + "\n")


def _quote(value: str) -> str:
    return json.dumps(value, ensure_ascii=False)


def _read_config_file() -> dict[str, object]:
    with CONFIG_FILE.open("rb") as handle:
        raw = tomllib.load(handle)
    data: dict[str, object] = {}
    for key in ("theme", "log_level", "active_profile"):
        value = raw.get(key)
        if isinstance(value, str):
            data[key] = value
    interval = raw.get("metrics_interval")
    if isinstance(interval, (int, float)) and not isinstance(interval, bool) and interval > 0:
        data["metrics_interval"] = float(interval)
    for section in ("connection", "browser"):
        value = raw.get(section)
        if isinstance(value, dict):
            data[section] = dict(value)
    profiles = raw.get("profiles")
    if isinstance(profiles, list):
        parsed_profiles: list[dict[str, object]] = []
        for profile in profiles:
            if not isinstance(profile, dict):
                continue
            parsed: dict[str, object] = {}
            for key in ("id", "name", "host", "password", "username"):
                value = profile.get(key)
                if isinstance(value, str):
                    parsed[key] = value
            for key in ("port", "db"):
                value = profile.get(key)
                if isinstance(value, int) and not isinstance(value, bool):
                    parsed[key] = value
            if parsed.get("id"):
                parsed.setdefault("name", parsed["id"])
                parsed_profiles.append(parsed)
        data["profiles"] = parsed_profiles
    return data


def _default_profiles() -> tuple[ConnectionProfileConfig, ...]:
    """Default profile shown on first run before config is customized."""

    return (
        ConnectionProfileConfig(
            id="local",
            name="Local Redis",
            host="localhost",
            port=6379,
        ),
    )
