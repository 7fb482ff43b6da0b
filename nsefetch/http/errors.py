# nsefetch/http/errors.py

from __future__ import annotations


class NseFetchError(Exception):
    """Base class for every error raised by nsefetch."""


class SessionAcquisitionError(NseFetchError):
    """Browser launch/connect, reference navigation or cookie read failed."""


class TransientFetchError(NseFetchError):
    """The in-page request failed or returned a body that is not JSON."""

    def __init__(self, message: str, *, url: str, status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class InvalidURLError(NseFetchError, ValueError):
    """The caller passed a URL that can never succeed."""


class FetchExhaustedError(NseFetchError):
    def __init__(self, url: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"Failed to fetch {url} after {attempts} attempts: {last_error!r}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error
