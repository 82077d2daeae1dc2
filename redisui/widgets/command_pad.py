"""Command pad widget: a redis-cli style prompt for the active connection."""

from __future__ import annotations

from typing import Callable

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, Input, Static

from redisui.models import CommandOutcome
from redisui.session import SessionManager, SessionState


class CommandPad(Container):
    """Runs raw commands through the session manager and shows the replies."""

    DEFAULT_CSS = """
    CommandPad {
        layout: vertical;
        border: round $primary 40%;
        padding: 1 2;
        height: 1fr;
        background: $surface;
    }

    CommandPad .panel-title {
        text-style: bold;
    }

    CommandPad Input {
        border: heavy $primary;
    }

    CommandPad:focus-within {
        border: round $primary;
        background: $surface-lighten-1;
    }

    CommandPad .command-actions {
        margin-top: 1;
        height: auto;
        align-horizontal: left;
    }

    CommandPad .command-actions > * {
        margin-right: 1;
    }

    CommandPad #command-output {
        height: 1fr;
        margin-top: 1;
        border-top: solid $surface-darken-2;
        overflow-y: auto;
    }

    #command-history {
        color: $text-muted;
        height: auto;
        max-height: 6;
    }
    """

    def __init__(self, session_manager: SessionManager, *, history_rows: int = 5) -> None:
        super().__init__(id="command-pad")
        self._session_manager = session_manager
        self._history_rows = history_rows
        self._input: Input | None = None
        self._output: Static | None = None
        self._status_panel: Static | None = None
        self._history_panel: Static | None = None
        self._unsubscribe: Callable[[], None] | None = None

    def compose(self) -> ComposeResult:
        yield Static("Command Pad", classes="panel-title")
        yield Input(placeholder="Type a command, e.g. GET user:1", id="command-input")
        yield Horizontal(
            Button("Run", id="run-command", variant="primary"),
            Static("", id="command-status"),
            classes="command-actions",
        )
        yield Static("", id="command-output")
        yield Static("", id="command-history")

    async def on_mount(self) -> None:
        self._input = self.query_one("#command-input", Input)
        self._output = self.query_one("#command-output", Static)
        self._status_panel = self.query_one("#command-status", Static)
        self._history_panel = self.query_one("#command-history", Static)
        self._unsubscribe = self._session_manager.subscribe(self._handle_session_update)

    def on_unmount(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "command-input":
            return
        event.stop()
        await self.run_current_command()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "run-command":
            event.stop()
            await self.run_current_command()

    async def run_current_command(self) -> None:
        if not self._input:
            return
        command = self._input.value.strip()
        if not command:
            self._set_status("Enter a command to run.", severity="warning")
            return
        self._set_status("Executing…", severity="information")
        response = await self._session_manager.run_command(command)
        outcome = response.data if isinstance(response.data, CommandOutcome) else None
        if outcome is not None:
            self._render_outcome(outcome)
        elif self._output:
            self._output.update(Text(f"(error) {response.error}"))
        if response.success and outcome is not None:
            self._set_status(f"{outcome.elapsed_ms:.1f} ms", severity="success")
            self._input.value = ""
        else:
            self._set_status(response.error or "Command failed.", severity="error")
        self._render_history()

    def _render_outcome(self, outcome: CommandOutcome) -> None:
        if not self._output:
            return
        self._output.update(Text(f"> {outcome.command}\n{outcome.reply.render()}"))

    def _render_history(self) -> None:
        if not self._history_panel:
            return
        response = self._session_manager.command_history(self._history_rows)
        entries = response.data or ()
        if not entries:
            self._history_panel.update("")
            return
        lines = ["Recent:"]
        for entry in entries:
            marker = "✖" if entry.error else "✔"
            lines.append(f"  {marker} {entry.command}")
        self._history_panel.update(Text("\n".join(lines)))

    def _handle_session_update(self, state: SessionState) -> None:
        if not state.connected:
            self._set_status(f"{state.profile.name}: {state.status}", severity="warning")
        self._render_history()

    def _set_status(self, message: str, *, severity: str) -> None:
        if not self._status_panel:
            return
        prefix = {
            "information": "ℹ",
            "warning": "⚠",
            "error": "✖",
            "success": "✔",
        }.get(severity, "•")
        self._status_panel.update(Text(f"{prefix} {message}"))


__all__ = ["CommandPad"]
