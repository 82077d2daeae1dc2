"""Widget library for the Textual UI."""

from __future__ import annotations

from .command_pad import CommandPad
from .connection_sidebar import ConnectionSidebar
from .key_browser import KeyBrowser
from .profile_form import ProfileForm
from .status_bar import StatusBar

__all__ = ["CommandPad", "ConnectionSidebar", "KeyBrowser", "ProfileForm", "StatusBar"]
