# nsefetch/http/client.py

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Iterable, TypeVar
from urllib.parse import urlparse

from nsefetch.config.session import SessionConfig
from nsefetch.http.browser import BrowserPage
from nsefetch.http.errors import FetchExhaustedError, InvalidURLError, TransientFetchError
from nsefetch.http.headers import build_headers
from nsefetch.http.result import AttemptResult, Fatal, Ok, Retryable
from nsefetch.http.session import SessionManager
from nsefetch.logging.logger import setup_logger
from nsefetch.utils.json import preview, safe_loads

log = setup_logger(__name__)

T = TypeVar("T")


def _validate_url(url: str) -> None:
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidURLError(f"Expected an absolute http(s) URL, got {url!r}")


class NseClient:
    """
    Authenticated GETs against the target site, issued from inside the
    browser page that earned the session cookies.

    A failed attempt of any kind (browser, network, non-JSON body) discards
    the page and session and is retried immediately, up to
    ``config.max_attempts`` times.
    """

    def __init__(
        self,
        sessions: SessionManager | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        if sessions is None:
            sessions = SessionManager(config)
        self._sessions = sessions
        self._config = config or sessions.config

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    async def __aenter__(self) -> "NseClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._sessions.close()

    async def _attempt(self, url: str) -> tuple[AttemptResult, BrowserPage | None]:
        try:
            _validate_url(url)
        except InvalidURLError as e:
            return Fatal(e), None

        page: BrowserPage | None = None
        try:
            creds = await self._sessions.acquire_credentials()
            page = creds.page

            headers = build_headers(self._config.base_url, creds.cookie_header, creds.user_agent)
            status, body = await page.fetch_text(url, headers)

            try:
                data = safe_loads(body)
            except ValueError as e:
                raise TransientFetchError(
                    f"Non-JSON response (status={status}): {preview(body)}",
                    url=url,
                    status=status,
                ) from e
        except Exception as e:
            return Retryable(e), page

        log.debug("Fetched %d characters from %s (status=%d)", len(body), url, status)
        return Ok(data), page

    async def fetch(self, url: str) -> Any:
        """
        GET ``url`` and return the decoded JSON body.

        Raises FetchExhaustedError once every attempt has failed, and
        InvalidURLError (a ValueError) straight away, without retrying, when
        ``url`` is not an absolute http(s) URL.
        """
        max_attempts = self._config.max_attempts
        last_error: Exception | None = None

        for attempt in range(1, max_attempts + 1):
            outcome, page = await self._attempt(url)

            if isinstance(outcome, Ok):
                if attempt > 1:
                    log.info("Fetched %s on attempt %d/%d", url, attempt, max_attempts)
                return outcome.value

            if isinstance(outcome, Fatal):
                log.error("Not retrying %s: %r", url, outcome.error)
                raise outcome.error

            last_error = outcome.error
            log.warning("Attempt %d/%d for %s failed: %r", attempt, max_attempts, url, last_error)
            try:
                await self._sessions.discard_page(page)
            except Exception as e:
                log.warning("Cleanup after attempt %d for %s raised %r", attempt, url, e)

        assert last_error is not None
        log.error("Giving up on %s after %d attempts", url, max_attempts)
        raise FetchExhaustedError(url, max_attempts, last_error) from last_error

    async def fetch_endpoint(self, path: str) -> Any:
        if not path.startswith("/"):
            path = "/" + path
        return await self.fetch(f"{self._config.base_url}{path}")

    async def fetch_many(self, urls: Iterable[str], *, concurrency: int | None = None) -> list[Any]:
        """Fan out over ``urls``; results come back in input order."""
        urls = list(urls)
        log.info("Fetching %d urls (concurrency=%s)", len(urls), concurrency or "unbounded")

        if concurrency:
            sem = asyncio.Semaphore(concurrency)
            return await asyncio.gather(*(limited(sem, self.fetch(u)) for u in urls))

        return await asyncio.gather(*(self.fetch(u) for u in urls))


async def limited(sem: asyncio.Semaphore, coro: Awaitable[T]) -> T:
    log.debug("Waiting for semaphore (value=%s)", getattr(sem, "_value", "?"))

    async with sem:
        log.debug("Semaphore acquired (value=%s)", getattr(sem, "_value", "?"))
        try:
            return await coro
        finally:
            log.debug("Semaphore released (value=%s)", getattr(sem, "_value", "?"))
