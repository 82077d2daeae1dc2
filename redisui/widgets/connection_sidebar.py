"""Sidebar widget listing saved connections and the active server's details."""

from __future__ import annotations

from typing import Awaitable, Callable

from rich.markup import escape
from rich.text import Text
from textual import events, on
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.message import Message
from textual.widget import Widget
from textual.widgets import Button, Label, ListItem, ListView, Static

from redisui.api import ApiResponse
from redisui.formatting import format_bytes, format_duration
from redisui.models import ConnectionProfile, DashboardStats
from redisui.session import SessionManager, SessionState
from redisui.widgets.profile_form import ProfileForm


class ConnectionSidebar(Container):
    """Displays saved profiles plus the keyspace of the active server."""

    DEFAULT_CSS = """
    ConnectionSidebar {
        width: 30;
        min-width: 24;
        border-right: solid $surface-darken-1;
        padding: 1;
        height: 1fr;
        background: $surface-darken-2;
    }

    ConnectionSidebar .sidebar-heading {
        text-style: bold;
        margin-bottom: 1;
    }

    ConnectionSidebar .sidebar-section {
        margin-bottom: 2;
    }

    #profile-list {
        height: 6;
        border: round $primary 30%;
        margin-bottom: 2;
    }

    #profile-list .active {
        text-style: bold;
    }

    #profile-summary {
        padding-top: 1;
        border-top: solid $surface-darken-1;
        color: $text-muted;
        min-height: 4;
    }
    """

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__(id="connection-sidebar")
        self._session_manager = session_manager
        self._profile_list: ListView | None = None
        self._profile_items: dict[str, _ProfileListItem] = {}
        self._databases: Static | None = None
        self._dashboard: Static | None = None
        self._profile_summary: Static | None = None
        self._context_menu: _ProfileContextMenu | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Connections", classes="sidebar-heading")
        yield Button("+ New connection", id="profile-new", flat=True, compact=True)
        items = [_ProfileListItem(profile.id, profile.name) for profile in self._session_manager.profiles]
        self._profile_items = {item.profile_id: item for item in items}
        self._profile_list = _ProfileListView(*items, id="profile-list")
        yield self._profile_list
        self._context_menu = _ProfileContextMenu(self._handle_profile_action)
        yield self._context_menu
        self._profile_summary = Static("Not connected.", id="profile-summary", classes="sidebar-section")
        yield self._profile_summary
        yield Static("Databases", classes="sidebar-heading")
        self._databases = Static("No keyspace loaded.", id="database-list", classes="sidebar-section")
        yield self._databases
        yield Static("Dashboard", classes="sidebar-heading")
        self._dashboard = Static("Not connected.", id="dashboard-stats", classes="sidebar-section")
        yield self._dashboard

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self._render_connections(state)
        self._render_databases(state)
        self._render_profile_summary(state)
        if state.connected and state.snapshot is not None:
            self.run_worker(self.refresh_dashboard(), group="dashboard", exclusive=True)
        else:
            self._show_dashboard("Not connected.")

    def _render_connections(self, state: SessionState) -> None:
        if not self._profile_list:
            return
        profiles = list(self._session_manager.profiles)
        active_index = 0
        for idx, profile in enumerate(profiles):
            item = self._profile_items.get(profile.id)
            if item is None:
                continue
            item.set_class(profile.id == state.profile.id, "active")
            if profile.id == state.profile.id:
                active_index = idx
        if profiles:
            self._profile_list.index = active_index

    def _render_databases(self, state: SessionState) -> None:
        if not self._databases:
            return
        snapshot = state.snapshot
        if not state.connected or snapshot is None or not snapshot.databases:
            self._databases.update("No keyspace loaded.")
            return
        lines = []
        for database in snapshot.databases:
            marker = "*" if database.db == state.profile.db else " "
            lines.append(f"{marker} db{database.db}: {database.keys} keys ({database.expires} expiring)")
        self._databases.update(Text("\n".join(lines)))

    def _render_profile_summary(self, state: SessionState) -> None:
        if not self._profile_summary:
            return
        latency = f"{state.latency_ms} ms" if state.latency_ms is not None else "-"
        lines = [
            f"Profile: {state.profile.name}",
            f"Address: {state.profile.address}",
            f"Status: {state.status} ({latency})",
        ]
        snapshot = state.snapshot
        if state.connected and snapshot is not None:
            lines.extend(
                [
                    f"Redis {snapshot.version or '?'} · {snapshot.mode} · {snapshot.role}",
                    f"Uptime: {format_duration(snapshot.uptime_seconds)}",
                    f"Clients: {snapshot.connected_clients}",
                    f"Memory: {snapshot.used_memory_human or format_bytes(snapshot.used_memory)}",
                    f"Hit rate: {snapshot.hit_rate:.1%}",
                ]
            )
        if state.last_error:
            lines.append(f"Error: {state.last_error.splitlines()[0][:120]}")
        self._profile_summary.update(Text("\n".join(lines)))

    async def refresh_dashboard(self) -> None:
        response = await self._session_manager.dashboard()
        if response.success:
            self._show_dashboard(describe_dashboard(response.data))
        else:
            self._show_dashboard(response.error or "Dashboard unavailable.")

    async def reload_profiles(self) -> None:
        """Rebuild the profile list after profiles were added, edited or removed."""

        if not self._profile_list:
            return
        await self._profile_list.clear()
        items = [_ProfileListItem(profile.id, profile.name) for profile in self._session_manager.profiles]
        self._profile_items = {item.profile_id: item for item in items}
        await self._profile_list.extend(items)
        state = self._session_manager.state
        if state is not None:
            self._render_connections(state)

    async def save_profile(self, profile: ConnectionProfile) -> ApiResponse:
        response = await self._session_manager.save_profile(profile)
        self._report(response)
        if response.success:
            await self.reload_profiles()
        return response

    async def delete_profile(self, profile_id: str) -> ApiResponse:
        response = await self._session_manager.delete_profile(profile_id)
        self._report(response)
        if response.success:
            await self.reload_profiles()
            if self._session_manager.state is None:
                self._clear_server_panels()
        return response

    async def test_profile(self, profile_id: str) -> ApiResponse:
        profile = self._find_profile(profile_id)
        if profile is None:
            response = ApiResponse.fail(f"Profile '{profile_id}' not found.")
        else:
            response = await self._session_manager.test_profile(profile)
        self._report(response)
        return response

    def open_profile_form(self, profile_id: str | None = None) -> None:
        """Show the add/edit form; saving it stores the profile."""

        profile = self._find_profile(profile_id) if profile_id else None

        def _saved(result: ConnectionProfile | None) -> None:
            if result is None:
                return
            if profile is None and self._find_profile(result.id) is not None:
                self._report(ApiResponse.fail(f"Connection '{result.id}' already exists."))
                return
            self.run_worker(self.save_profile(result), group="profiles", exclusive=True)

        self.app.push_screen(ProfileForm(profile, tester=self._session_manager.test_profile), _saved)

    @on(Button.Pressed, "#profile-new")
    def _handle_new_profile(self, event: Button.Pressed) -> None:
        event.stop()
        self._dismiss_context_menu()
        self.open_profile_form()

    def _find_profile(self, profile_id: str | None) -> ConnectionProfile | None:
        for profile in self._session_manager.profiles:
            if profile.id == profile_id:
                return profile
        return None

    def _report(self, response: ApiResponse) -> None:
        message = response.message if response.success else response.error
        if message:
            self.notify(escape(message), severity="information" if response.success else "error")

    def _show_dashboard(self, text: str) -> None:
        if self._dashboard:
            self._dashboard.update(Text(text))

    def _clear_server_panels(self) -> None:
        if self._profile_summary:
            self._profile_summary.update("Not connected.")
        if self._databases:
            self._databases.update("No keyspace loaded.")
        self._show_dashboard("Not connected.")

    @on(ListView.Selected)
    def _handle_profile_selected(self, event: ListView.Selected) -> None:
        if self._profile_list is None or event.list_view.id != "profile-list":
            return
        item = event.item
        if isinstance(item, _ProfileListItem):
            self._dismiss_context_menu()
            self._request_switch(item.profile_id)
            event.stop()

    def _request_switch(self, profile_id: str) -> None:
        switcher: Callable[[str], Awaitable[None]] | None = getattr(self.app, "switch_profile", None)
        if switcher is None:
            return
        self.run_worker(switcher(profile_id), group="connections", exclusive=True)

    def _handle_profile_action(self, action: str, profile_id: str) -> None:
        if action == "connect":
            self._request_switch(profile_id)
            return
        if action == "refresh":
            self.run_worker(self._session_manager.refresh_profile(profile_id), group="connections", exclusive=True)
            return
        if action == "disconnect" and self._session_manager.active_profile_id == profile_id:
            self.run_worker(self._session_manager.disconnect(), group="connections", exclusive=True)
            return
        if action == "edit":
            self.open_profile_form(profile_id)
        elif action == "test":
            self.run_worker(self.test_profile(profile_id), group="profiles", exclusive=True)
        elif action == "delete":
            self.run_worker(self.delete_profile(profile_id), group="profiles", exclusive=True)

    def on_mouse_down(self, event: events.MouseDown) -> None:
        if event.button == 1 and self._context_menu and self._context_menu.is_visible:
            if not self._context_menu.owns(event.control):
                self._context_menu.hide()

    def on_key(self, event: events.Key) -> None:
        if event.key in {"m", "shift+f10", "f10"}:
            if self._show_context_menu_for_current():
                event.stop()

    def on_profile_context_requested(self, event: "ProfileContextRequested") -> None:
        if not self._context_menu:
            return
        self._context_menu.show(event.profile_id)
        event.stop()

    def _dismiss_context_menu(self) -> None:
        if self._context_menu and self._context_menu.is_visible:
            self._context_menu.hide()

    def _show_context_menu_for_current(self) -> bool:
        if not self._context_menu or not self._profile_list:
            return False
        item = self._profile_list.highlighted_child
        if not isinstance(item, _ProfileListItem):
            return False
        self._context_menu.show(item.profile_id)
        return True


class _ProfileListView(ListView):
    """ListView with a binding to surface the context menu via keyboard."""

    BINDINGS = ListView.BINDINGS + [
        Binding("m", "profile_menu", "Connection menu", show=False),
        Binding("shift+f10", "profile_menu", "Connection menu", show=False),
    ]

    def action_profile_menu(self) -> None:
        item = self.highlighted_child
        if isinstance(item, _ProfileListItem):
            self.post_message(ProfileContextRequested(item.profile_id))


class _ProfileListItem(ListItem):
    """List item remembering which profile it stands for."""

    def __init__(self, profile_id: str, label: str) -> None:
        super().__init__(Label(Text(label)))
        self.profile_id = profile_id

    def on_mouse_down(self, event: events.MouseDown) -> None:
        if event.button == 3:
            event.stop()
            self.post_message(ProfileContextRequested(self.profile_id))


class _ProfileContextMenu(Container):
    """Inline context menu for connection items."""

    DEFAULT_CSS = """
    #profile-context-menu {
        border: round $surface-darken-1;
        padding: 1;
        margin-bottom: 1;
        background: $surface-darken-2;
    }

    #profile-context-menu .context-title {
        text-style: bold;
        margin-bottom: 1;
    }

    #profile-context-menu Button {
        width: 1fr;
        margin-top: 1;
    }
    """

    _ACTIONS = {
        "context-connect": "connect",
        "context-refresh": "refresh",
        "context-disconnect": "disconnect",
        "context-edit": "edit",
        "context-test": "test",
        "context-delete": "delete",
    }

    def __init__(self, action_handler: Callable[[str, str], None]) -> None:
        super().__init__(id="profile-context-menu", classes="sidebar-section")
        self._on_action = action_handler
        self._profile_id: str | None = None
        self._title = Label("", classes="context-title")
        self._buttons: tuple[Button, ...] = (
            Button("Connect", id="context-connect", flat=True, compact=True),
            Button("Refresh metrics", id="context-refresh", flat=True, compact=True),
            Button("Disconnect", id="context-disconnect", flat=True, compact=True),
            Button("Edit", id="context-edit", flat=True, compact=True),
            Button("Test connection", id="context-test", flat=True, compact=True),
            Button("Delete", id="context-delete", flat=True, compact=True),
        )
        self._focused_index = 0
        self.display = False

    @property
    def is_visible(self) -> bool:
        return bool(self.display)

    def compose(self) -> ComposeResult:
        yield self._title
        yield from self._buttons

    def show(self, profile_id: str) -> None:
        self._profile_id = profile_id
        self._title.update(Text(f"Actions for {profile_id}"))
        self.display = True
        self._focused_index = 0
        self.call_later(self._focus_current_button)

    def hide(self) -> None:
        self.display = False
        self._profile_id = None
        self._focused_index = 0
        self._focus_profile_list()

    def owns(self, widget: Widget | None) -> bool:
        node = widget
        while node is not None:
            if node is self:
                return True
            node = getattr(node, "parent", None)
        return False

    @on(Button.Pressed)
    def _handle_button_pressed(self, event: Button.Pressed) -> None:
        if not self._profile_id:
            return
        action = self._ACTIONS.get(event.button.id or "")
        if action:
            self._on_action(action, self._profile_id)
            self.hide()
            event.stop()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.hide()
            event.stop()
        elif event.key in {"up", "down"}:
            self._move_focus(-1 if event.key == "up" else 1)
            event.stop()

    def _move_focus(self, delta: int) -> None:
        self._focused_index = (self._focused_index + delta) % len(self._buttons)
        self._focus_current_button()

    def _focus_current_button(self) -> None:
        self._buttons[self._focused_index].focus()

    def _focus_profile_list(self) -> None:
        if not self.parent:
            return
        for list_view in self.parent.query("#profile-list").results(ListView):
            list_view.focus()


class ProfileContextRequested(Message):
    """Posted when a connection item asks for its context menu."""

    def __init__(self, profile_id: str) -> None:
        super().__init__()
        self.profile_id = profile_id


def describe_dashboard(stats: DashboardStats) -> str:
    lines = [
        f"Keys: {stats.total_keys} · Clients: {stats.connected_clients}",
        f"Ops/s: {stats.ops_per_second} · Hit rate: {stats.hit_rate:.1%}",
        f"Memory: {format_bytes(stats.total_memory)}",
    ]
    by_type = sorted(stats.keyspace_by_type.items(), key=lambda item: (-item[1], item[0].value))
    lines.extend(f"  {data_type.value}: {count}" for data_type, count in by_type)
    return "\n".join(lines)


__all__ = ["ConnectionSidebar", "ProfileContextRequested", "describe_dashboard"]
