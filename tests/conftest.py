"""
Shared fakes for the session/fetch tests.

FakeSite plays the target server: it counts reference navigations (the
expensive step we want to spy on) and replays scripted responses for the
in-page fetches.
"""

import asyncio
import os
from collections import deque

import pytest

os.environ.setdefault("NSEFETCH_LOG_FILE", "0")

from nsefetch.config.session import SessionConfig
from nsefetch.http.client import NseClient
from nsefetch.http.session import SessionManager

DEFAULT_COOKIES = [
    {"name": "nsit", "value": "abc"},
    {"name": "nseappid", "value": "xyz"},
]


class FakeClock:
    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSite:
    def __init__(self):
        self.navigations = []
        self.requests = []
        self.cookies = list(DEFAULT_COOKIES)
        self.navigation_error = None
        # answers by url once the script runs out
        self.router = lambda url: (200, '{"ok": true}')
        self._script = deque()

    def script(self, *outcomes):
        """Queue outcomes for the next fetches: an exception, a callable or a (status, body) pair."""
        self._script.extend(outcomes)

    async def respond(self, page, url, headers):
        self.requests.append((url, headers))
        await asyncio.sleep(0)
        outcome = self._script.popleft() if self._script else self.router(url)
        if callable(outcome) and not isinstance(outcome, BaseException):
            outcome = outcome(page)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakePage:
    def __init__(self, browser, n):
        self.browser = browser
        self.handle = f"page-{n}"
        self.closed = False
        self.user_agent = None

    async def set_user_agent(self, user_agent):
        self.user_agent = user_agent

    async def goto(self, url):
        self.browser.site.navigations.append(url)
        await asyncio.sleep(0)
        if self.browser.site.navigation_error is not None:
            raise self.browser.site.navigation_error

    async def cookies(self):
        return list(self.browser.site.cookies)

    async def fetch_text(self, url, headers):
        return await self.browser.site.respond(self, url, headers)

    async def is_closed(self):
        return self.closed or not self.browser.connected

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, site):
        self.site = site
        self.connected = True
        self.quit_called = False
        self.pages = []

    async def is_connected(self):
        return self.connected and not self.quit_called

    async def new_page(self):
        page = FakePage(self, len(self.pages) + 1)
        self.pages.append(page)
        return page

    async def quit(self):
        self.quit_called = True


class FakeBrowserFactory:
    def __init__(self, site):
        self.site = site
        self.launched = []
        self.error = None

    async def __call__(self, config):
        if self.error is not None:
            raise self.error
        browser = FakeBrowser(self.site)
        self.launched.append(browser)
        return browser


class UserAgents:
    def __init__(self):
        self.issued = 0

    def __call__(self):
        self.issued += 1
        return f"TestAgent/{self.issued}"


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def site():
    return FakeSite()


@pytest.fixture
def factory(site):
    return FakeBrowserFactory(site)


@pytest.fixture
def config():
    return SessionConfig(base_url="https://www.nseindia.com", cookie_max_age_s=60, max_cookie_uses=10, max_attempts=10)


@pytest.fixture
def manager(config, factory, clock):
    return SessionManager(
        config,
        browser_factory=factory,
        user_agent_factory=UserAgents(),
        clock=clock,
    )


@pytest.fixture
def client(manager, config):
    return NseClient(manager, config)
