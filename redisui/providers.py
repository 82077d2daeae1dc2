"""Command palette providers for core app features."""

from __future__ import annotations

from textual.command import DiscoveryHit, Hit, Hits, Provider
from textual.types import IgnoreReturnCallbackType

from .session import SessionManager


class ProfileSwitchProvider(Provider):
    """Expose connection profiles to the command palette."""

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        for profile in manager.profiles:
            match = matcher.match(profile.name)
            if match > 0:
                yield Hit(
                    score=match,
                    match_display=f"Connect to: {matcher.highlight(profile.name)}",
                    command=self._build_callback(profile.id),
                    help=f"Open {profile.address} as the active connection.",
                )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        for profile in manager.profiles:
            yield DiscoveryHit(
                display=f"Connect to: {profile.name}",
                command=self._build_callback(profile.id),
                help=f"Open {profile.address} as the active connection.",
            )

    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None

    def _build_callback(self, profile_id: str) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            switcher = getattr(self.app, "switch_profile", None)
            if switcher is None:
                return
            await switcher(profile_id)

        return _run


class SessionRefreshProvider(Provider):
    """Expose a metrics refresh for the active connection."""

    _LABEL = "Refresh server metrics"

    async def search(self, query: str) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        matcher = self.matcher(query)
        score = matcher.match(self._LABEL)
        if score > 0:
            yield Hit(
                score=score,
                match_display=matcher.highlight(self._LABEL),
                command=self._build_callback(),
                help="Same as Ctrl+R.",
            )

    async def discover(self) -> Hits:
        manager = self._session_manager
        if manager is None:
            return
        yield DiscoveryHit(
            display=self._LABEL,
            command=self._build_callback(),
            help="Same as Ctrl+R.",
        )

    @property
    def _session_manager(self) -> SessionManager | None:
        manager = getattr(self.app, "session_manager", None)
        if isinstance(manager, SessionManager):
            return manager
        return None

    def _build_callback(self) -> IgnoreReturnCallbackType:
        async def _run() -> None:
            manager = self._session_manager
            if manager is None:
                return
            await manager.refresh()

        return _run


__all__ = ["ProfileSwitchProvider", "SessionRefreshProvider"]
