"""Status bar widget that mirrors session information."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual.widgets import Static

from redisui.formatting import format_bytes
from redisui.session import SessionManager, SessionState


class StatusBar(Static):
    """Compact status strip rendered above Textual's footer."""

    DEFAULT_CSS = """
    StatusBar {
        height: 1;
        padding: 0 1;
        background: $surface-darken-3;
        color: $text;
    }
    """

    def __init__(self, session_manager: SessionManager) -> None:
        super().__init__("Not connected", id="status-bar")
        self._session_manager = session_manager
        self._unsubscribe: Callable[[], None] | None = None

    async def on_mount(self) -> None:
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _handle_session_update(self, state: SessionState) -> None:
        self.update(Text(describe_state(state)))


def describe_state(state: SessionState) -> str:
    latency = f"{state.latency_ms} ms" if state.latency_ms is not None else "-"
    refreshed = state.refreshed_at.astimezone().strftime("%H:%M:%S")
    parts = [
        f"Profile: {state.profile.name}",
        f"Server: {state.profile.address}",
        f"Status: {state.status} ({latency})",
    ]
    snapshot = state.snapshot
    if snapshot is not None:
        parts.append(f"Keys: {snapshot.total_keys}")
        parts.append(f"Memory: {snapshot.used_memory_human or format_bytes(snapshot.used_memory)}")
        parts.append(f"Ops/s: {snapshot.instantaneous_ops_per_sec}")
    parts.append(f"Refreshed: {refreshed}")
    if state.last_error:
        reason = state.last_error.splitlines()[0][:80]
        parts.append(f"Error: {reason}")
    return " | ".join(parts)


__all__ = ["StatusBar", "describe_state"]
