"""Modal form for adding, editing and testing connection profiles."""

from __future__ import annotations

from typing import Awaitable, Callable, Mapping

from rich.text import Text
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, Static

from redisui.api import ApiResponse
from redisui.models import ConnectionProfile

ProfileTester = Callable[[ConnectionProfile], Awaitable[ApiResponse]]

_FIELDS = (
    ("id", "Id", "cache"),
    ("name", "Name", "Cache server"),
    ("host", "Host", "localhost"),
    ("port", "Port", "6379"),
    ("db", "Database", "0"),
    ("username", "Username", "optional"),
    ("password", "Password", "optional"),
)


def profile_from_fields(values: Mapping[str, str]) -> ConnectionProfile:
    """Build a profile from raw form values; raises ``ValueError`` on bad input."""

    profile_id = values.get("id", "").strip()
    name = values.get("name", "").strip() or profile_id
    if not name:
        raise ValueError("Give the connection a name.")
    try:
        port = int(values.get("port", "").strip() or 6379)
        db = int(values.get("db", "").strip() or 0)
    except ValueError:
        raise ValueError("Port and database must be whole numbers.") from None
    return ConnectionProfile(
        id=profile_id,
        name=name,
        host=values.get("host", "").strip() or "localhost",
        port=port,
        db=db,
        username=values.get("username", "").strip() or None,
        password=values.get("password", "") or None,
    )


class ProfileForm(ModalScreen[ConnectionProfile | None]):
    """Collects connection details; dismisses with the profile or ``None``."""

    DEFAULT_CSS = """
    ProfileForm {
        align: center middle;
    }

    ProfileForm #profile-form {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $primary;
        background: $surface;
    }

    ProfileForm .form-title {
        text-style: bold;
        margin-bottom: 1;
    }

    ProfileForm .form-actions {
        height: auto;
        margin-top: 1;
    }

    ProfileForm .form-actions > Button {
        margin-right: 1;
    }

    ProfileForm #profile-form-status {
        margin-top: 1;
        color: $text-muted;
    }
    """

    BINDINGS = [Binding("escape", "cancel", "Cancel", show=False)]

    def __init__(self, profile: ConnectionProfile | None = None, *, tester: ProfileTester | None = None) -> None:
        super().__init__()
        self._profile = profile
        self._tester = tester

    def compose(self) -> ComposeResult:
        profile = self._profile
        current = {
            "id": profile.id if profile else "",
            "name": profile.name if profile else "",
            "host": profile.host if profile else "",
            "port": str(profile.port) if profile else "",
            "db": str(profile.db) if profile else "",
            "username": (profile.username or "") if profile else "",
            "password": (profile.password or "") if profile else "",
        }
        with Vertical(id="profile-form"):
            title = f"Edit {profile.name}" if profile else "New connection"
            yield Label(Text(title), classes="form-title")
            for key, label, placeholder in _FIELDS:
                yield Input(
                    value=current[key],
                    placeholder=f"{label} ({placeholder})",
                    password=key == "password",
                    disabled=key == "id" and profile is not None,
                    id=f"profile-{key}",
                )
            with Horizontal(classes="form-actions"):
                yield Button("Save", id="profile-save", variant="primary")
                yield Button("Test", id="profile-test")
                yield Button("Cancel", id="profile-cancel")
            yield Static("", id="profile-form-status")

    def values(self) -> dict[str, str]:
        return {key: self.query_one(f"#profile-{key}", Input).value for key, _, _ in _FIELDS}

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if event.button.id == "profile-save":
            self.action_save()
        elif event.button.id == "profile-test":
            await self.test_profile()
        else:
            self.action_cancel()

    def action_save(self) -> None:
        profile = self._build()
        if profile is not None:
            self.dismiss(profile)

    def action_cancel(self) -> None:
        self.dismiss(None)

    async def test_profile(self) -> None:
        profile = self._build()
        if profile is None or self._tester is None:
            return
        self._set_status(f"Testing {profile.address}…")
        response = await self._tester(profile)
        self._set_status(response.message if response.success else f"Failed: {response.error}")

    def _build(self) -> ConnectionProfile | None:
        try:
            return profile_from_fields(self.values())
        except ValueError as exc:
            self._set_status(str(exc))
            return None

    def _set_status(self, message: str | None) -> None:
        self.query_one("#profile-form-status", Static).update(Text(message or ""))


__all__ = ["ProfileForm", "ProfileTester", "profile_from_fields"]
