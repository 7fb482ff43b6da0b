# nsefetch/http/session.py

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, replace
from typing import Awaitable, Callable

from nsefetch.config.session import SessionConfig
from nsefetch.http.browser import BrowserHandle, BrowserPage
from nsefetch.http.errors import SessionAcquisitionError
from nsefetch.http.headers import generate_user_agent, serialize_cookies
from nsefetch.logging.logger import setup_logger

log = setup_logger(__name__)

BrowserFactory = Callable[[SessionConfig], Awaitable[BrowserHandle]]


@dataclass
class Session:
    cookie_header: str = ""  # "" means never initialized
    user_agent: str = ""
    used_count: int = 0
    expires_at: float = 0.0

    def is_valid(self, now: float, max_uses: int) -> bool:
        return self.cookie_header != "" and self.used_count <= max_uses and now < self.expires_at


@dataclass(frozen=True)
class Credentials:
    cookie_header: str
    user_agent: str
    page: BrowserPage


class SessionManager:
    """
    Owns the browser, the current page and the cookie/user-agent pair minted
    by navigating that page to the reference URL.

    Sessions are reused until they are used more than ``max_cookie_uses``
    times or ``cookie_max_age_s`` elapses. Refreshes are single-flight:
    concurrent callers that find the session stale wait on one navigation.
    """

    def __init__(
        self,
        config: SessionConfig | None = None,
        *,
        browser_factory: BrowserFactory | None = None,
        user_agent_factory: Callable[[], str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config or SessionConfig.from_env()
        self._browser_factory = browser_factory or BrowserHandle.launch
        self._user_agent_factory = user_agent_factory or generate_user_agent
        self._clock = clock

        self._session = Session()
        self._browser: BrowserHandle | None = None
        self._page: BrowserPage | None = None
        self._refresh_lock = asyncio.Lock()
        self._refresh_count = 0

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def session(self) -> Session:
        return replace(self._session)

    @property
    def page(self) -> BrowserPage | None:
        return self._page

    @property
    def browser(self) -> BrowserHandle | None:
        return self._browser

    @property
    def refresh_count(self) -> int:
        return self._refresh_count

    async def _needs_refresh(self) -> bool:
        page = self._page
        if page is None or await page.is_closed():
            return True
        # re-read after the await: a failing caller may have discarded the page
        if page is not self._page:
            return True
        return not self._session.is_valid(self._clock(), self._config.max_cookie_uses)

    async def acquire_credentials(self) -> Credentials:
        if await self._needs_refresh():
            async with self._refresh_lock:
                # another caller may have refreshed while we waited
                if await self._needs_refresh():
                    await self._refresh()
                else:
                    log.debug("Session already refreshed by a concurrent caller")

        # nothing awaited since the last check or commit, so page and session match
        assert self._page is not None
        self._session.used_count += 1
        return Credentials(
            cookie_header=self._session.cookie_header,
            user_agent=self._session.user_agent,
            page=self._page,
        )

    def invalidate(self) -> None:
        """Force the next acquisition down the refresh path. Leaves the browser alone."""
        self._session = replace(self._session, cookie_header="")

    async def _open_page(self) -> BrowserPage:
        try:
            if self._browser is not None and await self._browser.is_connected():
                return await self._browser.new_page()

            if self._browser is not None:
                log.warning("Browser disconnected; launching a new one")
                stale, self._browser = self._browser, None
                await stale.quit()

            self._browser = await self._browser_factory(self._config)
            return await self._browser.new_page()
        except Exception as e:
            raise SessionAcquisitionError(f"Could not open a browser page: {e!r}") from e

    async def _refresh(self) -> None:
        url = self._config.reference_url
        user_agent = self._user_agent_factory()

        log.info("Refreshing session via %s", url)
        started = time.monotonic()

        page = await self._open_page()
        try:
            await page.set_user_agent(user_agent)
            await page.goto(url)
            cookies = await page.cookies()
        except Exception as e:
            await self._close_page(page)
            raise SessionAcquisitionError(f"Session bootstrap via {url} failed: {e!r}") from e

        cookie_header = serialize_cookies(cookies)
        if not cookie_header:
            await self._close_page(page)
            raise SessionAcquisitionError(f"No cookies were issued by {url}")

        previous = self._page
        if previous is not None:
            await self._close_page(previous)

        # commit last: callers read page and session right after this returns
        self._page = page
        self._session = Session(
            cookie_header=cookie_header,
            user_agent=user_agent,
            used_count=0,
            expires_at=self._clock() + self._config.cookie_max_age_s,
        )
        self._refresh_count += 1

        log.info(
            "Session refreshed (#%d): %d cookies in %.2fs",
            self._refresh_count,
            len(cookies),
            time.monotonic() - started,
        )

    async def discard_page(self, page: BrowserPage | None) -> None:
        """
        Recovery after a failed request: drop ``page`` and, if it is still the
        current one, the session minted on it. The browser is only dropped
        when it no longer answers.
        """
        current = self._page
        if page is None or page is current:
            self.invalidate()
            self._page = None
            page = current

        if page is not None:
            await self._close_page(page)

        if self._browser is not None and not await self._browser.is_connected():
            log.warning("Browser disconnected; dropping it")
            stale, self._browser = self._browser, None
            await stale.quit()

    async def _close_page(self, page: BrowserPage) -> None:
        try:
            await page.close()
        except Exception as e:
            log.warning("Closing page %s raised %r", page.handle, e)

    async def close(self) -> None:
        self.invalidate()
        self._page = None
        browser, self._browser = self._browser, None
        if browser is not None:
            await browser.quit()
