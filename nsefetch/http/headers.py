# nsefetch/http/headers.py

from __future__ import annotations

from typing import Iterable, Mapping

from browserforge.headers import HeaderGenerator
from nsefetch.logging.logger import setup_logger

log = setup_logger(__name__)

# the driver is Chrome, so the user-agent must claim a Chrome engine
_gen = HeaderGenerator(browser="chrome")

BASE_HEADERS: dict[str, str] = {
    "Authority": "www.nseindia.com",
    "Referer": "https://www.nseindia.com/",
    "Accept": "*/*",
    "Origin": "https://www.nseindia.com",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "application/json, text/plain, */*",
    "Connection": "keep-alive",
}


def generate_user_agent() -> str:
    ua = _gen.generate()["User-Agent"]
    log.debug("Generated User-Agent=%s", ua)
    return ua


def serialize_cookies(cookies: Iterable[Mapping[str, object]]) -> str:
    """Turn WebDriver cookie dicts into a single ``name=value; name=value`` header."""
    return "; ".join(f"{c['name']}={c['value']}" for c in cookies)


def site_headers(base_url: str) -> dict[str, str]:
    """The fixed header set, pointed at ``base_url``'s host."""
    host = base_url.split("://", 1)[-1].split("/", 1)[0]

    headers = dict(BASE_HEADERS)
    headers["Authority"] = host
    headers["Origin"] = base_url
    headers["Referer"] = f"{base_url}/"
    return headers


def build_headers(
    base_url: str,
    cookie_header: str,
    user_agent: str,
    extra: dict[str, str] | None = None,
) -> dict[str, str]:
    headers = site_headers(base_url)
    headers["Cookie"] = cookie_header
    headers["User-Agent"] = user_agent

    if extra:
        headers.update(extra)

    log.debug(
        "Headers built: UA=%s | cookies=%d",
        headers.get("User-Agent"),
        len([c for c in cookie_header.split(";") if c.strip()]),
    )

    return headers
