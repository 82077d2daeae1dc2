"""Textual application entry point for redisui."""

from __future__ import annotations

import logging
from typing import Callable

from rich.markup import escape
from textual.app import App, ComposeResult
from textual.containers import Horizontal, Vertical
from textual.logging import TextualHandler
from textual.widgets import Footer, Header

from .config import AppConfig, load_config
from .connections import ClientFactory
from .providers import ProfileSwitchProvider, SessionRefreshProvider
from .session import SessionManager, SessionState
from .widgets import CommandPad, ConnectionSidebar, KeyBrowser, StatusBar

LOG = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    """Route library logging to the Textual devtools console."""

    root = logging.getLogger()
    if not any(isinstance(handler, TextualHandler) for handler in root.handlers):
        root.addHandler(TextualHandler())
    resolved = logging.getLevelName(level.upper())
    root.setLevel(resolved if isinstance(resolved, int) else logging.WARNING)


class RedisUIApp(App[None]):
    """Terminal console for browsing and administering Redis servers."""

    COMMANDS = App.COMMANDS | {ProfileSwitchProvider, SessionRefreshProvider}
    CSS = """
    Screen {
        layout: vertical;
    }
    #content {
        layout: horizontal;
        height: 1fr;
    }
    #main-column {
        layout: vertical;
        padding: 1 2;
        height: 1fr;
        border-left: solid $surface-darken-1;
    }
    ConnectionSidebar {
        width: 30;
        min-width: 24;
    }
    """

    BINDINGS = [
        ("ctrl+c", "quit", "Quit"),
        ("ctrl+r", "refresh", "Refresh Metrics"),
        ("ctrl+p", "command_palette", "Command Palette"),
    ]

    def __init__(
        self,
        *,
        config: AppConfig | None = None,
        client_factory: ClientFactory | None = None,
        persist: bool = True,
        auto_connect: bool = True,
    ) -> None:
        super().__init__()
        self._config = config or load_config()
        self._session_manager = SessionManager(
            config=self._config,
            client_factory=client_factory,
            persist=persist,
        )
        self._auto_connect = auto_connect
        self._session_unsubscribe: Callable[[], None] | None = None
        self._last_session_state: SessionState | None = None
        self._pending_notifications: list[tuple[str, str]] = []

    def compose(self) -> ComposeResult:
        """Compose the root layout."""

        yield Header(show_clock=True)
        main_column = Vertical(
            KeyBrowser(self._session_manager),
            CommandPad(self._session_manager),
            id="main-column",
        )
        yield Horizontal(ConnectionSidebar(self._session_manager), main_column, id="content")
        yield StatusBar(self._session_manager)
        yield Footer()

    async def on_mount(self) -> None:
        self.theme = "textual-light" if self._config.theme == "light" else "textual-dark"
        self._flush_pending_notifications()
        self._session_unsubscribe = self._session_manager.subscribe(self._handle_session_state)
        self.set_interval(self._config.metrics_interval, self._poll_metrics, name="metrics")
        if self._auto_connect:
            self.run_worker(self._session_manager.connect_active(), group="connections", exclusive=True)

    async def action_refresh(self) -> None:
        await self._session_manager.refresh()

    @property
    def session_manager(self) -> SessionManager:
        """Expose the session manager for tests."""

        return self._session_manager

    async def switch_profile(self, profile_id: str) -> None:
        """Activate the requested connection profile; the choice is persisted on success."""

        try:
            state = await self._session_manager.connect(profile_id)
        except ValueError as exc:
            self._safe_notify(str(exc), severity="error")
            return
        if state.connected:
            self._safe_notify(f"Connected to {state.profile.name}", severity="information")

    async def _poll_metrics(self) -> None:
        if self._session_manager.connected:
            await self._session_manager.refresh()

    async def _shutdown(self) -> None:
        if self._session_unsubscribe:
            self._session_unsubscribe()
            self._session_unsubscribe = None
        await self._session_manager.close()
        await super()._shutdown()

    def _handle_session_state(self, state: SessionState) -> None:
        previous = self._last_session_state
        if state.status == "Connection failed" and state.last_error:
            reason = state.last_error.splitlines()[0][:120]
            self._safe_notify(f"{state.profile.name}: {reason}", severity="error")
        elif previous and previous.connected and not state.connected and state.status == "Refresh failed":
            self._safe_notify(f"{state.profile.name}: connection lost.", severity="warning")
        self._last_session_state = state

    def _safe_notify(self, message: str, *, severity: str = "information") -> None:
        if self.is_running:
            try:
                self.notify(escape(message), severity=severity)
            except Exception:
                LOG.exception("Failed to display notification", extra={"message": message})
        else:
            self._pending_notifications.append((message, severity))

    def _flush_pending_notifications(self) -> None:
        if not self._pending_notifications:
            return
        pending = list(self._pending_notifications)
        self._pending_notifications.clear()
        for message, severity in pending:
            try:
                self.notify(escape(message), severity=severity)
            except Exception:
                LOG.exception("Failed to display queued notification", extra={"message": message})


def main() -> None:
    """Invoke the Textual application."""

    config = load_config()
    configure_logging(config.log_level)
    LOG.info("Starting redisui", extra={"profiles": len(config.profiles)})
    RedisUIApp(config=config).run()


if __name__ == "__main__":
    main()
