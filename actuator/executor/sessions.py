"""
Browser session registry.

One Playwright driver, one browser and one shared context (so login state is
shared) are owned by the registry; every session key gets its own page and its
own asyncio.Lock. All work on a session happens inside ``acquire``, which holds
that lock for the whole call. A background reaper closes sessions idle for
longer than the configured timeout and never touches a session that is busy.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from actuator.config import browser_headless, session_idle_ms

logger = logging.getLogger(__name__)

DEFAULT_SESSION_ID = "default"
DEFAULT_SWEEP_INTERVAL_S = 60.0
DEFAULT_VIEWPORT = {"width": 1280, "height": 800}

PageFactory = Callable[[], Awaitable[Any]]


@dataclass
class BrowserSession:
    session_id: str
    page: Any
    last_used: float = field(default_factory=time.monotonic)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    closed: bool = False

    def idle_ms(self, now: Optional[float] = None) -> int:
        return int(((now if now is not None else time.monotonic()) - self.last_used) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        try:
            url = self.page.url
        except Exception:  # noqa: BLE001
            url = None
        return {
            "sessionId": self.session_id,
            "url": url,
            "idleMs": self.idle_ms(),
            "busy": self.lock.locked(),
        }


class SessionRegistry:
    """Owns browser sessions keyed by session id."""

    def __init__(
        self,
        idle_timeout_ms: Optional[int] = None,
        sweep_interval_s: float = DEFAULT_SWEEP_INTERVAL_S,
        headless: Optional[bool] = None,
        page_factory: Optional[PageFactory] = None,
    ) -> None:
        self.idle_timeout_ms = idle_timeout_ms if idle_timeout_ms is not None else session_idle_ms()
        self.sweep_interval_s = sweep_interval_s
        self.headless = browser_headless() if headless is None else headless
        self._page_factory = page_factory
        self._sessions: Dict[str, BrowserSession] = {}
        self._create_lock = asyncio.Lock()
        self._playwright: Any = None
        self._browser: Any = None
        self._context: Any = None
        self._reaper: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------ driver

    async def _ensure_context(self) -> Any:
        if self._context is not None:
            return self._context
        from playwright.async_api import async_playwright

        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self.headless,
            args=["--disable-blink-features=AutomationControlled", "--no-first-run"],
        )
        self._context = await self._browser.new_context(viewport=dict(DEFAULT_VIEWPORT))
        logger.info("Browser launched (headless=%s)", self.headless)
        return self._context

    async def _new_page(self) -> Any:
        if self._page_factory is not None:
            return await self._page_factory()
        context = await self._ensure_context()
        return await context.new_page()

    # ---------------------------------------------------------------- sessions

    async def _get_or_create(self, session_id: str) -> BrowserSession:
        async with self._create_lock:
            session = self._sessions.get(session_id)
            if session is not None and not session.closed:
                return session
            page = await self._new_page()
            session = BrowserSession(session_id=session_id, page=page)
            self._sessions[session_id] = session
            logger.info("Browser session created: %s", session_id)
            return session

    @asynccontextmanager
    async def acquire(self, session_id: str = DEFAULT_SESSION_ID) -> AsyncIterator[BrowserSession]:
        """Hold the session's lock for the duration of the block, creating the session on demand."""
        while True:
            session = await self._get_or_create(session_id)
            await session.lock.acquire()
            if session.closed:
                # Evicted or closed while we were waiting; start over with a fresh page.
                session.lock.release()
                continue
            break
        session.last_used = time.monotonic()
        try:
            yield session
        finally:
            session.last_used = time.monotonic()
            session.lock.release()

    async def new_page(self, session: BrowserSession) -> Any:
        """Point a held session at a fresh page in the shared context and close the old one."""
        previous = session.page
        session.page = await self._new_page()
        try:
            await previous.close()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Closing replaced page for session %s failed: %s", session.session_id, exc)
        return session.page

    async def discard(self, session: BrowserSession) -> None:
        """Close a session's page and drop it. Callers either hold its lock or have proven it idle."""
        session.closed = True
        if self._sessions.get(session.session_id) is session:
            del self._sessions[session.session_id]
        try:
            await session.page.close()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Page close failed for session %s: %s", session.session_id, exc)
        logger.info("Browser session closed: %s", session.session_id)

    async def close(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        async with session.lock:
            if session.closed:
                return False
            await self.discard(session)
        return True

    async def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """Close sessions idle longer than the timeout; busy sessions are skipped."""
        now = time.monotonic() if now is None else now
        evicted: List[str] = []
        for session in list(self._sessions.values()):
            if session.lock.locked() or session.closed:
                continue
            if session.idle_ms(now) <= self.idle_timeout_ms:
                continue
            evicted.append(session.session_id)
            await self.discard(session)
        if evicted:
            logger.info("Reaped idle browser sessions: %s", evicted)
        return evicted

    def get(self, session_id: str) -> Optional[BrowserSession]:
        return self._sessions.get(session_id)

    def current_url(self, session_id: str) -> Optional[str]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        try:
            return session.page.url
        except Exception:  # noqa: BLE001
            return None

    def urls(self) -> Dict[str, Optional[str]]:
        return {sid: self.current_url(sid) for sid in list(self._sessions)}

    def list_sessions(self) -> List[Dict[str, Any]]:
        return [s.to_dict() for s in list(self._sessions.values())]

    def __len__(self) -> int:
        return len(self._sessions)

    # ------------------------------------------------------------------ reaper

    async def _reap_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                await self.evict_idle()
            except Exception as exc:  # noqa: BLE001
                logger.exception("Session reaper sweep failed: %s", exc)

    def start(self) -> None:
        if self._reaper is None or self._reaper.done():
            self._reaper = asyncio.get_running_loop().create_task(self._reap_forever())

    async def stop(self) -> None:
        if self._reaper is not None:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

    async def close_all(self) -> None:
        await self.stop()
        for session in list(self._sessions.values()):
            await self.discard(session)
        for closer, label in (
            (getattr(self._context, "close", None), "context"),
            (getattr(self._browser, "close", None), "browser"),
            (getattr(self._playwright, "stop", None), "playwright"),
        ):
            if closer is None:
                continue
            try:
                await closer()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Error closing %s: %s", label, exc)
        self._context = self._browser = self._playwright = None


__all__ = ["DEFAULT_SESSION_ID", "BrowserSession", "SessionRegistry"]
