"""Storage for the LinkedIn login used by the session connector."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from dotenv import dotenv_values, set_key, unset_key

logger = logging.getLogger(__name__)

EMAIL_KEY = "LINKEDIN_EMAIL"
PASSWORD_KEY = "LINKEDIN_PASSWORD"


@dataclass(frozen=True)
class Credentials:
    email: str
    password: str

    def __repr__(self) -> str:
        return f"Credentials(email={self.email!r}, password='***')"


class CredentialStore(Protocol):
    def get(self) -> Credentials | None: ...

    def set(self, credentials: Credentials) -> None: ...

    def clear(self) -> None: ...


class MemoryCredentialStore:
    """Process-local store, used when credentials are passed in directly."""

    def __init__(self, credentials: Credentials | None = None) -> None:
        self._credentials = credentials

    def get(self) -> Credentials | None:
        return self._credentials

    def set(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = None


class EnvCredentialStore:
    """
    Credentials kept in a dotenv file.

    Reads fall back to the process environment so values exported by the shell
    work without a file. ``clear`` removes the keys from both, since
    ``load_dotenv`` copies the file into the environment.
    """

    def __init__(self, env_path: Path | str = ".env") -> None:
        self.env_path = Path(env_path)

    def get(self) -> Credentials | None:
        values = dotenv_values(self.env_path) if self.env_path.exists() else {}
        email = values.get(EMAIL_KEY) or os.getenv(EMAIL_KEY, "")
        password = values.get(PASSWORD_KEY) or os.getenv(PASSWORD_KEY, "")
        if not email or not password:
            return None
        return Credentials(email=email, password=password)

    def set(self, credentials: Credentials) -> None:
        self.env_path.parent.mkdir(parents=True, exist_ok=True)
        self.env_path.touch(exist_ok=True)
        set_key(str(self.env_path), EMAIL_KEY, credentials.email)
        set_key(str(self.env_path), PASSWORD_KEY, credentials.password)
        logger.info("Stored LinkedIn credentials for %s in %s", credentials.email, self.env_path)

    def clear(self) -> None:
        for key in (EMAIL_KEY, PASSWORD_KEY):
            os.environ.pop(key, None)
        if not self.env_path.exists():
            return
        for key in (EMAIL_KEY, PASSWORD_KEY):
            if key in dotenv_values(self.env_path):
                unset_key(str(self.env_path), key)
        logger.info("Cleared LinkedIn credentials from %s", self.env_path)
