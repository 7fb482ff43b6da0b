# nsefetch/http/browser.py

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, TypeVar
from urllib.parse import urlparse

from seleniumbase import Driver

from nsefetch.config.session import SessionConfig
from nsefetch.http.errors import TransientFetchError
from nsefetch.logging.logger import setup_logger

log = setup_logger(__name__)

R = TypeVar("R")

# runs inside the page, so the request carries the browser's own fingerprint
_FETCH_SCRIPT = """
const url = arguments[0];
const headers = arguments[1];
const done = arguments[arguments.length - 1];
fetch(url, { headers: headers, credentials: "include" })
    .then((resp) => resp.text().then((body) => done({ status: resp.status, body: body })))
    .catch((err) => done({ error: String(err) }));
"""

_RESOURCE_COUNT_SCRIPT = "return performance.getEntriesByType('resource').length;"


def _create_driver(config: SessionConfig) -> Any:
    if config.remote_url:
        parsed = urlparse(config.remote_url)
        log.info("Connecting to remote browser at %s", config.remote_url)
        driver = Driver(
            browser="chrome",
            headless=config.headless,
            protocol=parsed.scheme or "http",
            servername=parsed.hostname,
            port=parsed.port or 4444,
        )
    else:
        log.info("Launching local browser (headless=%s)", config.headless)
        driver = Driver(
            uc=True,
            headless=config.headless,
            chromium_arg=",".join(config.chromium_args) or None,
        )

    driver.set_page_load_timeout(config.navigation_timeout_s)
    driver.set_script_timeout(config.script_timeout_s)
    return driver


class BrowserHandle:
    """
    One WebDriver session. WebDriver commands are blocking and the driver
    has a single "current window", so every command goes through ``_lock``
    and runs in a worker thread.
    """

    def __init__(self, driver: Any, config: SessionConfig, anchor: str) -> None:
        self._driver = driver
        self._config = config
        self._lock = asyncio.Lock()
        self._closed = False
        # never closed: Chrome ends the session when its last window goes away
        self._anchor = anchor

    @classmethod
    async def launch(cls, config: SessionConfig) -> "BrowserHandle":
        def _start() -> tuple[Any, str]:
            driver = _create_driver(config)
            return driver, driver.current_window_handle

        driver, anchor = await asyncio.to_thread(_start)
        return cls(driver, config, anchor)

    async def run(self, fn: Callable[..., R], *args: Any) -> R:
        async with self._lock:
            return await asyncio.to_thread(fn, *args)

    async def run_in_window(self, handle: str, fn: Callable[..., R], *args: Any) -> R:
        def _switch_then_call() -> R:
            self._driver.switch_to.window(handle)
            return fn(*args)

        return await self.run(_switch_then_call)

    @property
    def driver(self) -> Any:
        return self._driver

    async def is_connected(self) -> bool:
        if self._closed:
            return False
        try:
            await self.run(lambda: self._driver.window_handles)
        except Exception as e:
            # a dead chromedriver or Grid surfaces as urllib3 errors, not WebDriverException
            log.debug("Browser is not responding: %r", e)
            return False
        return True

    async def window_handles(self) -> list[str]:
        return await self.run(lambda: list(self._driver.window_handles))

    async def new_page(self) -> "BrowserPage":
        def _open_tab() -> str:
            self._driver.switch_to.window(self._anchor)
            self._driver.switch_to.new_window("tab")
            return self._driver.current_window_handle

        handle = await self.run(_open_tab)
        log.debug("Opened page %s", handle)
        return BrowserPage(self, handle, self._config)

    async def close_window(self, handle: str) -> None:
        def _close() -> None:
            self._driver.switch_to.window(handle)
            self._driver.close()
            self._driver.switch_to.window(self._anchor)

        await self.run(_close)

    async def quit(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.run(self._driver.quit)
        except Exception as e:
            # already dead is the usual reason we get here
            log.warning("Browser quit raised %r", e)
        log.info("Browser closed")


class BrowserPage:
    def __init__(self, browser: BrowserHandle, handle: str, config: SessionConfig) -> None:
        self._browser = browser
        self._handle = handle
        self._config = config
        self._closed = False

    @property
    def handle(self) -> str:
        return self._handle

    @property
    def browser(self) -> BrowserHandle:
        return self._browser

    async def _run(self, fn: Callable[..., R], *args: Any) -> R:
        return await self._browser.run_in_window(self._handle, fn, *args)

    async def set_user_agent(self, user_agent: str) -> None:
        driver = self._browser.driver
        cdp = getattr(driver, "execute_cdp_cmd", None)
        if cdp is None:
            log.warning("Driver has no CDP access; keeping the browser's own User-Agent")
            return
        await self._run(cdp, "Network.setUserAgentOverride", {"userAgent": user_agent})

    async def goto(self, url: str) -> None:
        log.debug("Navigating %s to %s", self._handle, url)
        await self._run(self._browser.driver.get, url)
        await self._wait_for_network_idle()

    async def _wait_for_network_idle(self) -> None:
        """
        Poll the resource timeline until no new entries show up for one quiet
        window. Bounded by navigation_timeout_s; running out is logged, not
        raised, since the load event has already fired by then.
        """
        driver = self._browser.driver
        quiet = self._config.settle_quiet_s
        deadline = time.monotonic() + self._config.navigation_timeout_s

        last = await self._run(driver.execute_script, _RESOURCE_COUNT_SCRIPT)
        while time.monotonic() < deadline:
            await asyncio.sleep(quiet)
            count = await self._run(driver.execute_script, _RESOURCE_COUNT_SCRIPT)
            if count == last:
                return
            last = count

        log.warning("Network did not settle within %.1fs on %s", self._config.navigation_timeout_s, self._handle)

    async def cookies(self) -> list[dict[str, Any]]:
        return await self._run(self._browser.driver.get_cookies)

    async def fetch_text(self, url: str, headers: dict[str, str]) -> tuple[int, str]:
        """GET ``url`` with ``fetch()`` inside the page. Returns (status, body)."""
        driver = self._browser.driver
        result = await self._run(driver.execute_async_script, _FETCH_SCRIPT, url, headers)

        if not isinstance(result, dict):
            raise TransientFetchError(f"Unexpected in-page fetch result: {result!r}", url=url)
        if "error" in result:
            raise TransientFetchError(f"In-page fetch failed: {result['error']}", url=url)

        return int(result.get("status") or 0), result.get("body") or ""

    async def is_closed(self) -> bool:
        if self._closed:
            return True
        try:
            handles = await self._browser.window_handles()
        except Exception as e:
            log.debug("Page %s liveness check failed: %r", self._handle, e)
            return True
        return self._handle not in handles

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._browser.close_window(self._handle)
        log.debug("Closed page %s", self._handle)
