"""Selenium session management utilities for LinkedIn sessions."""

from __future__ import annotations

import logging
import pickle
from collections.abc import Iterable
from pathlib import Path

from selenium import webdriver
from selenium.common.exceptions import InvalidCookieDomainException, UnableToSetCookieException
from selenium.webdriver.chrome.service import Service

logger = logging.getLogger(__name__)


class SessionManager:
    """Create and manage a Chrome webdriver session, plus cookie persistence."""

    def __init__(
        self,
        headless: bool = True,
        user_agent: str | None = None,
        window_size: str = "1280,900",
        driver_path: str | None = None,
        cookie_path: Path = Path("data/linkedin_cookies.pkl"),
        download_dir: Path | None = None,
        page_load_timeout: int = 30,
    ) -> None:
        self.headless = headless
        self.user_agent = user_agent
        self.window_size = window_size
        self.driver_path = driver_path
        self.cookie_path = Path(cookie_path)
        self.download_dir = Path(download_dir) if download_dir else None
        self.page_load_timeout = page_load_timeout
        self._driver: webdriver.Chrome | None = None

    @property
    def active(self) -> bool:
        return self._driver is not None

    def start(self) -> webdriver.Chrome:
        """Start (or return existing) Chrome webdriver."""
        if self._driver:
            return self._driver

        options = self._build_options()
        if self.driver_path:
            service = Service(executable_path=self.driver_path)
            self._driver = webdriver.Chrome(service=service, options=options)
        else:
            # Let Selenium's built-in manager resolve chromedriver
            self._driver = webdriver.Chrome(options=options)

        self._driver.set_page_load_timeout(self.page_load_timeout)
        logger.info("Chrome session started (headless=%s)", self.headless)
        return self._driver

    def get_driver(self) -> webdriver.Chrome:
        """Ensure a webdriver is available."""
        return self.start()

    def _build_options(self) -> webdriver.ChromeOptions:
        options = webdriver.ChromeOptions()
        if self.headless:
            options.add_argument("--headless=new")
        options.add_argument(f"--window-size={self.window_size}")
        options.add_argument("--disable-gpu")
        options.add_argument("--disable-dev-shm-usage")
        options.add_argument("--no-sandbox")
        options.add_experimental_option("excludeSwitches", ["enable-automation"])
        options.add_experimental_option("useAutomationExtension", False)
        if self.user_agent:
            options.add_argument(f"--user-agent={self.user_agent}")
        if self.download_dir:
            # CVs land here without a save dialog
            options.add_experimental_option(
                "prefs",
                {
                    "download.default_directory": str(self.download_dir),
                    "download.prompt_for_download": False,
                    "plugins.always_open_pdf_externally": True,
                },
            )
        return options

    # Cookie handling -----------------------------------------------------------------
    def load_cookies(self, cookie_path: Path | None = None) -> bool:
        """Load cookies into the current session. Returns True if loaded."""
        path = cookie_path or self.cookie_path
        if not path.exists():
            return False

        driver = self.get_driver()
        with open(path, "rb") as f:
            cookies: Iterable[dict] = pickle.load(f)

        driver.get("https://www.linkedin.com/")
        skipped = 0
        for cookie in cookies:
            # Selenium requires domain to match current page
            try:
                driver.add_cookie(cookie)
            except (InvalidCookieDomainException, UnableToSetCookieException):
                skipped += 1
        if skipped:
            logger.debug("Skipped %s cookie(s) that did not match the LinkedIn domain", skipped)
        return True

    def save_cookies(self, cookie_path: Path | None = None) -> None:
        """Persist cookies from the current session."""
        driver = self.get_driver()
        path = cookie_path or self.cookie_path
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "wb") as f:
            pickle.dump(driver.get_cookies(), f)

    def clear_cookies(self, cookie_path: Path | None = None) -> None:
        """Forget persisted cookies (logout)."""
        path = cookie_path or self.cookie_path
        path.unlink(missing_ok=True)
        if self._driver:
            self._driver.delete_all_cookies()

    def quit(self) -> None:
        """Cleanly shut down the webdriver."""
        if self._driver:
            try:
                self._driver.quit()
            finally:
                self._driver = None
