# nsefetch/config/session.py

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Tuple

from dotenv import load_dotenv

_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class SessionConfig:
    base_url: str = "https://www.nseindia.com"
    # lightweight page whose navigation makes the anti-bot layer mint cookies
    reference_path: str = "/get-quotes/equity?symbol=TCS"
    cookie_max_age_s: float = 60
    max_cookie_uses: int = 10
    max_attempts: int = 10
    headless: bool = True
    remote_url: str | None = None
    navigation_timeout_s: float = 30
    script_timeout_s: float = 30
    settle_quiet_s: float = 0.5
    chromium_args: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.cookie_max_age_s <= 0:
            raise ValueError("cookie_max_age_s must be > 0")
        if self.max_cookie_uses < 1:
            raise ValueError("max_cookie_uses must be >= 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.navigation_timeout_s <= 0 or self.script_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")
        if self.settle_quiet_s < 0:
            raise ValueError("settle_quiet_s must be >= 0")
        self.base_url = self.base_url.rstrip("/")

    @property
    def reference_url(self) -> str:
        return f"{self.base_url}{self.reference_path}"

    @classmethod
    def from_env(cls, **overrides) -> "SessionConfig":
        """
        Build a config from the process environment (and a local .env file).

        BROWSER_REMOTE_URL points at an externally managed Selenium Grid
        browser, for hosts without a local Chrome binary.
        """
        load_dotenv()

        values: dict = {}

        remote_url = os.getenv("BROWSER_REMOTE_URL", "").strip()
        if remote_url:
            values["remote_url"] = remote_url

        headless = os.getenv("BROWSER_HEADLESS")
        if headless is not None and headless.strip():
            values["headless"] = headless.strip().lower() in _TRUTHY

        values.update(overrides)
        return cls(**values)
