"""Key browser widget: paginated key listing with a detail pane."""

from __future__ import annotations

from typing import Callable

from rich.markup import escape
from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Container, Horizontal
from textual.widgets import Button, DataTable, Input, Select, Static

from redisui.formatting import format_bytes, format_duration
from redisui.models import DataType, KeyDetails, KeyPage
from redisui.session import SessionManager, SessionState

_PREVIEW_ITEMS = 20

# Column key -> sort field understood by the inspector.
_SORTABLE_COLUMNS = {"name": "name", "type": "type", "ttl": "ttl", "size": "size"}

_TYPE_OPTIONS = [(data_type.value, data_type.value) for data_type in DataType if data_type is not DataType.NONE]


class KeyBrowser(Container):
    """Lists keys of the active connection and previews the selected one."""

    DEFAULT_CSS = """
    KeyBrowser {
        layout: vertical;
        border: round $primary 40%;
        padding: 1 2;
        height: 1fr;
        background: $surface;
    }

    KeyBrowser .panel-title {
        text-style: bold;
    }

    KeyBrowser .browser-actions {
        height: auto;
        margin-top: 1;
    }

    KeyBrowser .browser-actions > * {
        margin-right: 1;
    }

    KeyBrowser #key-type {
        width: 20;
    }

    KeyBrowser #key-table {
        height: 1fr;
        margin-top: 1;
    }

    KeyBrowser #key-details {
        height: auto;
        max-height: 12;
        border-top: solid $surface-darken-2;
        padding-top: 1;
        color: $text-muted;
    }
    """

    BINDINGS = Container.BINDINGS + [
        Binding("delete", "delete_key", "Delete key", show=False),
        Binding("space", "toggle_mark", "Mark key", show=False),
        Binding("ctrl+l", "reload", "Reload keys", show=False),
    ]

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__(id="key-browser")
        self._session_manager = session_manager
        self._pattern = "*"
        self._page = 1
        self._sort_by = "name"
        self._sort_order = "asc"
        self._data_type: DataType | None = None
        self._marked: set[str] = set()
        self._current: KeyPage | None = None
        self._selected: str | None = None
        self._table: DataTable | None = None
        self._details: Static | None = None
        self._page_label: Static | None = None
        self._connected_id: str | None = None
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def marked(self) -> frozenset[str]:
        return frozenset(self._marked)

    def compose(self) -> ComposeResult:
        yield Static("Keys", classes="panel-title")
        yield Horizontal(
            Input(value="*", placeholder="Glob pattern, e.g. user:*", id="key-pattern"),
            Select(_TYPE_OPTIONS, prompt="All types", id="key-type"),
            classes="browser-actions",
        )
        yield Horizontal(
            Button("Prev", id="keys-prev", compact=True),
            Button("Next", id="keys-next", compact=True),
            Button("Delete marked", id="keys-delete-marked", variant="error", compact=True),
            Static("", id="keys-page"),
            classes="browser-actions",
        )
        yield DataTable(id="key-table", zebra_stripes=True, cursor_type="row")
        yield Static("Select a key to preview it.", id="key-details")

    async def on_mount(self) -> None:
        self._table = self.query_one("#key-table", DataTable)
        self._details = self.query_one("#key-details", Static)
        self._page_label = self.query_one("#keys-page", Static)
        self._table.add_column("", key="mark", width=1)
        self._table.add_column("Key", key="name")
        self._table.add_column("Type", key="type")
        self._table.add_column("TTL", key="ttl")
        self._table.add_column("Size", key="size")
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "key-pattern":
            return
        event.stop()
        self._pattern = event.value.strip() or "*"
        self._page = 1
        await self.reload()

    async def on_select_changed(self, event: Select.Changed) -> None:
        if event.select.id != "key-type":
            return
        event.stop()
        await self.filter_by_type(DataType(event.value) if isinstance(event.value, str) else None)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "keys-delete-marked":
            event.stop()
            await self.delete_marked()
            return
        if event.button.id == "keys-prev" and self._current and self._current.has_prev:
            self._page -= 1
        elif event.button.id == "keys-next" and self._current and self._current.has_next:
            self._page += 1
        else:
            return
        event.stop()
        await self.reload()

    async def on_data_table_header_selected(self, event: DataTable.HeaderSelected) -> None:
        field = _SORTABLE_COLUMNS.get(str(event.column_key.value))
        if field is None:
            return
        event.stop()
        await self.sort_by(field)

    async def on_data_table_row_selected(self, event: DataTable.RowSelected) -> None:
        name = event.row_key.value
        if not name:
            return
        self._selected = name
        response = await self._session_manager.key_details(name)
        if not response.success:
            self._show_details(response.error or "Failed to load key.")
        elif response.data is None:
            self._show_details(response.message or f"Key '{name}' not found.")
        else:
            self._show_details(describe_key(response.data))

    async def action_reload(self) -> None:
        await self.reload()

    def action_toggle_mark(self) -> None:
        if not self._table or not self._table.row_count:
            return
        row_key, _ = self._table.coordinate_to_cell_key(self._table.cursor_coordinate)
        if row_key.value:
            self.toggle_mark(row_key.value)

    async def action_delete_key(self) -> None:
        if self._marked:
            await self.delete_marked()
            return
        if not self._selected:
            return
        response = await self._session_manager.delete_key(self._selected)
        self._report(response.message or response.error or "", success=response.success)
        self._selected = None
        await self.reload()

    async def sort_by(self, field: str) -> None:
        """Sort by ``field``; choosing the current field again flips the order."""

        if field == self._sort_by:
            self._sort_order = "desc" if self._sort_order == "asc" else "asc"
        else:
            self._sort_by = field
            self._sort_order = "asc"
        self._page = 1
        await self.reload()

    async def filter_by_type(self, data_type: DataType | None) -> None:
        self._data_type = data_type
        self._page = 1
        await self.reload()

    def toggle_mark(self, name: str) -> None:
        if name in self._marked:
            self._marked.discard(name)
        else:
            self._marked.add(name)
        if self._table and name in self._table.rows:
            self._table.update_cell(name, "mark", "●" if name in self._marked else "")

    async def delete_marked(self) -> None:
        if not self._marked:
            self._report("Mark keys with space before deleting them.", success=False)
            return
        response = await self._session_manager.delete_keys(sorted(self._marked))
        self._report(response.message or response.error or "", success=response.success)
        if response.success:
            if self._selected in self._marked:
                self._selected = None
            self._marked.clear()
        await self.reload()

    async def reload(self) -> None:
        if not self._table:
            return
        response = await self._session_manager.list_keys(
            self._pattern,
            page=self._page,
            sort_by=self._sort_by,
            sort_order=self._sort_order,
            data_type=self._data_type,
            with_sizes=True,
        )
        self._table.clear()
        if not response.success:
            self._current = None
            self._set_page_label(response.error or "")
            return
        page: KeyPage = response.data
        self._current = page
        for summary in page.items:
            self._table.add_row(
                "●" if summary.name in self._marked else "",
                Text(summary.name),
                summary.data_type.value,
                format_duration(summary.ttl),
                format_bytes(summary.size_bytes),
                key=summary.name,
            )
        pages = max((page.total + page.page_size - 1) // page.page_size, 1)
        arrow = "↑" if self._sort_order == "asc" else "↓"
        self._set_page_label(f"Page {page.page}/{pages} · {page.total} key(s) · {self._sort_by} {arrow}")

    def _handle_session_update(self, state: SessionState) -> None:
        connected_id = state.profile.id if state.connected else None
        if connected_id == self._connected_id:
            return
        self._connected_id = connected_id
        self._page = 1
        self._selected = None
        self._marked.clear()
        self._show_details("Select a key to preview it.")
        self.run_worker(self.reload(), group="keys", exclusive=True)

    def _report(self, message: str, *, success: bool) -> None:
        self.notify(escape(message), severity="information" if success else "error")

    def _set_page_label(self, text: str) -> None:
        if self._page_label:
            self._page_label.update(Text(text))

    def _show_details(self, text: str) -> None:
        if self._details:
            self._details.update(Text(text))


def describe_key(details: KeyDetails) -> str:
    """Multi-line preview of a key's metadata and (abbreviated) value."""

    lines = [
        f"{details.name} ({details.data_type.value})",
        f"TTL: {format_duration(details.ttl)}",
    ]
    if details.length is not None:
        lines.append(f"Length: {details.length}")
    metadata = details.metadata
    if metadata.encoding:
        lines.append(f"Encoding: {metadata.encoding}")
    if metadata.memory_usage is not None:
        lines.append(f"Memory: {format_bytes(metadata.memory_usage)}")
    value = details.value
    if isinstance(value, dict):
        items = [f"  {field} = {entry}" for field, entry in list(value.items())[:_PREVIEW_ITEMS]]
    elif isinstance(value, tuple):
        items = [f"  {entry}" for entry in value[:_PREVIEW_ITEMS]]
    else:
        items = [f"  {value}"]
    lines.extend(items)
    if details.truncated or (isinstance(value, (dict, tuple)) and len(value) > _PREVIEW_ITEMS):
        lines.append("  …")
    return "\n".join(lines)


__all__ = ["KeyBrowser", "describe_key"]
