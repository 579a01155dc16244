"""
Quote Session Store

Registry of in-progress quotes. Each session exclusively owns one
launched browser; the store creates it, refreshes its activity on every
access, tears it down on destroy, and reaps sessions left idle.
"""

import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Page

from racv_quote.automation.browser import BrowserHandle, launch_browser
from racv_quote.config import get_settings
from racv_quote.models import QuoteState

# Called with (session_id, reason) after a session's browser is closed
DestroyHook = Callable[[str, str], None]


@dataclass
class QuoteSession:
    id: str
    handle: BrowserHandle
    state: QuoteState = QuoteState.INITIALIZED
    created_at: float = 0.0
    last_activity: float = 0.0
    # Set while a step is driving the page; the reaper leaves busy sessions alone
    busy: bool = False
    car_description: Optional[str] = None

    @property
    def page(self) -> Page:
        return self.handle.page


class SessionStore:
    """
    Process-local map of session id -> QuoteSession.

    Construct one at process start, start() its reaper, and stop() it at
    shutdown. Tests build isolated stores with a fake launcher and clock.
    """

    def __init__(
        self,
        launcher: Callable[[], Awaitable[BrowserHandle]] = launch_browser,
        session_timeout: float = 600.0,
        sweep_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.launcher = launcher
        self.session_timeout = session_timeout
        self.sweep_interval = sweep_interval
        self.clock = clock
        self._sessions: dict[str, QuoteSession] = {}
        self._reaper: Optional[asyncio.Task] = None
        self._destroy_hooks: list[DestroyHook] = []

    # =========================================================================
    # Lifecycle operations
    # =========================================================================

    async def create(self) -> QuoteSession:
        """
        Launch a browser and register a new session in the initialized state.

        Launch failures propagate; nothing is registered in that case.
        """
        handle = await self.launcher()
        now = self.clock()
        session = QuoteSession(
            id=str(uuid.uuid4()),
            handle=handle,
            created_at=now,
            last_activity=now,
        )
        self._sessions[session.id] = session
        print(f"[SessionStore] Created session {session.id[:8]}... (active: {len(self._sessions)})")
        return session

    def get(self, session_id: str) -> Optional[QuoteSession]:
        """Look up a session and count the lookup as activity."""
        session = self._sessions.get(session_id)
        if session:
            session.last_activity = self.clock()
        return session

    def set_state(self, session_id: str, state: QuoteState) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.state = state
            session.last_activity = self.clock()

    def add_destroy_hook(self, hook: DestroyHook) -> None:
        """Register a callback run after every teardown, whoever triggered it."""
        if hook not in self._destroy_hooks:
            self._destroy_hooks.append(hook)

    async def destroy(self, session_id: str, reason: str = "destroyed") -> None:
        """
        Close a session's browser and forget it.

        Safe to call repeatedly and concurrently: the entry is removed
        before teardown starts, so only one caller ever closes the browser
        and runs the destroy hooks.

        Args:
            session_id: Session to tear down
            reason: Passed to the destroy hooks (e.g. "expired", "shutdown")
        """
        session = self._sessions.pop(session_id, None)
        if session is None:
            return
        await session.handle.close()
        print(f"[SessionStore] Destroyed session {session_id[:8]}... (active: {len(self._sessions)})")
        for hook in self._destroy_hooks:
            hook(session_id, reason)

    def active_count(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    # =========================================================================
    # Idle reaper
    # =========================================================================

    def _is_expired(self, session: QuoteSession) -> bool:
        return not session.busy and self.clock() - session.last_activity > self.session_timeout

    async def sweep(self) -> list[str]:
        """Destroy every idle session past the timeout. Returns the reaped ids."""
        candidates = [sid for sid, session in self._sessions.items() if self._is_expired(session)]
        reaped = []
        for session_id in candidates:
            # Earlier teardowns yield, so a candidate may have been used or removed since
            session = self._sessions.get(session_id)
            if session is None or not self._is_expired(session):
                continue
            print(f"[SessionStore] Cleaning up expired session: {session_id}")
            await self.destroy(session_id, reason="expired")
            reaped.append(session_id)
        return reaped

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                print(f"[SessionStore] Sweep error: {e}")

    def start(self) -> None:
        """Start the background reaper task."""
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.create_task(self._reap_forever())
            print(f"[SessionStore] Reaper started (timeout={self.session_timeout}s, every {self.sweep_interval}s)")

    async def stop(self) -> None:
        """Stop the reaper and close every remaining session."""
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None
        await self.close_all()

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.destroy(session_id, reason="shutdown")

    async def __aenter__(self) -> "SessionStore":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.stop()


# Global store instance
_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """Get or create the process-wide session store."""
    global _store
    if _store is None:
        settings = get_settings()
        _store = SessionStore(
            session_timeout=settings.session_timeout,
            sweep_interval=settings.sweep_interval,
        )
    return _store
