"""LinkedIn session connector with cookie reuse and retries."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from selenium.common.exceptions import (
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)
from selenium.webdriver.common.by import By
from selenium.webdriver.support import expected_conditions as EC
from selenium.webdriver.support.ui import WebDriverWait

from auth.credential_store import CredentialStore, Credentials
from auth.session_manager import SessionManager
from orchestration.errors import FatalError

logger = logging.getLogger(__name__)


class LinkedInAuthError(FatalError):
    """Raised when authentication fails. Ends the extraction run."""


class LinkedInSession:
    """
    Ensure the browser holds an authenticated LinkedIn session.

    Persisted cookies are tried first; credential login is the fallback and is
    retried with backoff on transient webdriver failures only.
    """

    def __init__(
        self,
        session_manager: SessionManager,
        credentials: CredentialStore,
        login_url: str = "https://www.linkedin.com/login",
        home_url: str = "https://www.linkedin.com/feed/",
        max_retries: int = 3,
        backoff_start_seconds: int = 2,
        backoff_max_seconds: int = 30,
        wait_seconds: int = 15,
        sleep_fn: Callable[[float], Any] = time.sleep,
    ) -> None:
        self.session_manager = session_manager
        self.credentials = credentials
        self.login_url = login_url
        self.home_url = home_url
        self.max_retries = max_retries
        self.backoff_start_seconds = backoff_start_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.wait_seconds = wait_seconds
        self.sleep_fn = sleep_fn
        self.logged_in = False

    def connect(self) -> None:
        """Reuse cookies or log in. Raises LinkedInAuthError when that is impossible."""
        if self.logged_in and self._is_logged_in():
            return

        driver = self.session_manager.get_driver()

        if self.session_manager.load_cookies() and self._is_logged_in():
            logger.info("Reused persisted LinkedIn session")
            self.logged_in = True
            return

        stored = self.credentials.get()
        if stored is None:
            raise LinkedInAuthError(
                "No LinkedIn credentials available; set LINKEDIN_EMAIL and LINKEDIN_PASSWORD"
            )

        for attempt in range(1, self.max_retries + 1):
            try:
                self._login_once(driver, stored)
                if not self._is_logged_in():
                    raise LinkedInAuthError("Login did not reach feed page")
                self.session_manager.save_cookies()
                self.logged_in = True
                logger.info("Logged in to LinkedIn as %s", stored.email)
                return
            except LinkedInAuthError:
                # Invalid credentials or a security check: do not retry
                raise
            except (TimeoutException, WebDriverException) as exc:
                logger.warning("Login attempt %s/%s failed: %s", attempt, self.max_retries, exc)
                if attempt >= self.max_retries:
                    raise LinkedInAuthError("Login failed after retries") from exc
                self._backoff(attempt)

        raise LinkedInAuthError("Login failed")

    def logout(self) -> None:
        self.session_manager.clear_cookies()
        self.logged_in = False

    def _login_once(self, driver: Any, credentials: Credentials) -> None:
        driver.get(self.login_url)

        wait = WebDriverWait(driver, self.wait_seconds)
        try:
            email_el = wait.until(EC.presence_of_element_located((By.ID, "username")))
            password_el = wait.until(EC.presence_of_element_located((By.ID, "password")))
            submit_el = wait.until(
                EC.element_to_be_clickable(
                    (By.XPATH, "//button[@type='submit' or @aria-label='Sign in']")
                )
            )
        except TimeoutException as exc:
            raise LinkedInAuthError("Login form not available") from exc

        email_el.clear()
        email_el.send_keys(credentials.email)
        password_el.clear()
        password_el.send_keys(credentials.password)
        submit_el.click()

        # Wait for either feed page or an error indicator
        try:
            WebDriverWait(driver, self.wait_seconds).until(EC.url_contains("/feed"))
        except TimeoutException as exc:
            if self._has_invalid_credentials_error(driver):
                raise LinkedInAuthError("Invalid LinkedIn credentials") from exc
            if "checkpoint" in driver.current_url:
                raise LinkedInAuthError(
                    "LinkedIn security check required; log in manually in the browser first"
                ) from exc
            raise

    def _is_logged_in(self) -> bool:
        driver = self.session_manager.get_driver()
        driver.get(self.home_url)
        return "/feed" in driver.current_url and "login" not in driver.current_url

    def _has_invalid_credentials_error(self, driver: Any) -> bool:
        try:
            error_el = driver.find_element(By.CSS_SELECTOR, ".alert.error, .form__message--error")
            return error_el.is_displayed()
        except NoSuchElementException:
            return False

    def _backoff(self, attempt: int) -> None:
        delay = min(self.backoff_start_seconds * (2 ** (attempt - 1)), self.backoff_max_seconds)
        self.sleep_fn(delay)
