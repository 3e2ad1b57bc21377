"""
Configuration management for applicant extraction
Loads settings from .env and provides typed access to configuration values
"""

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from models import ExtractionTarget

# Load environment variables (prefer .env values over existing env vars)
load_dotenv(override=True)

# Base directories
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / "data"
LOG_DIR = BASE_DIR / "logs"


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").strip().lower() in (
        "1",
        "true",
        "yes",
        "on",
    )


def _env_list(name: str) -> list[str] | None:
    """Comma separated list; None when the variable is unset or blank."""
    value = os.getenv(name, "")
    if not value.strip():
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


class Config:
    """Configuration manager for applicant extraction"""

    def __init__(self):
        self._load_env_config()

    def _resolve_path(self, env_var: str, default: Path) -> Path:
        """Resolve a path from env; treat relative values as repo-root relative."""
        value = os.getenv(env_var)
        if not value:
            return default

        candidate = Path(value)
        if candidate.is_absolute():
            return candidate

        return (BASE_DIR / candidate).resolve()

    def _load_env_config(self):
        """Load configuration from environment variables"""
        # LinkedIn
        self.linkedin_email = os.getenv("LINKEDIN_EMAIL", "")
        self.linkedin_password = os.getenv("LINKEDIN_PASSWORD", "")
        self.headless = _env_bool("HEADLESS", False)

        # File paths (resolve against repo data dir by default)
        self.download_dir = self._resolve_path("DOWNLOAD_DIR", DATA_DIR / "cvs")
        self.export_dir = self._resolve_path("EXPORT_DIR", DATA_DIR / "exports")
        self.cookie_path = self._resolve_path(
            "COOKIE_PATH", DATA_DIR / "linkedin_cookies.pkl"
        )

        # Batch settings
        self.batch_size = int(os.getenv("BATCH_SIZE", "5"))
        self.max_items = int(os.getenv("MAX_ITEMS", "100"))
        self.cooldown_ms = int(os.getenv("COOLDOWN_MS", "3000"))
        self.fetch_profiles = _env_bool("FETCH_PROFILES", True)
        self.download_cvs = _env_bool("DOWNLOAD_CVS", False)
        timeout = os.getenv("ITEM_TIMEOUT_SECONDS", "30").strip()
        # 0 or blank disables the per-item timeout
        self.item_timeout_seconds = float(timeout) if timeout and float(timeout) > 0 else None

        # Retry settings
        self.max_retries = int(os.getenv("MAX_RETRIES", "3"))
        self.retry_base_delay_ms = int(os.getenv("RETRY_BASE_DELAY_MS", "5000"))
        self.retry_backoff_factor = float(os.getenv("RETRY_BACKOFF_FACTOR", "1.5"))
        self.retryable_keywords = _env_list("RETRYABLE_KEYWORDS")
        self.fatal_keywords = _env_list("FATAL_KEYWORDS")

        # Logging settings
        self.log_level = os.getenv("LOG_LEVEL", "INFO")
        self.log_dir = self._resolve_path("LOG_DIR", LOG_DIR)
        self.log_file_retention_days = int(os.getenv("LOG_FILE_RETENTION_DAYS", "30"))

    def validate(self) -> list[str]:
        """
        Validate configuration values

        Returns:
                List of validation error messages (empty if valid)
        """
        errors = []

        if self.batch_size < 1:
            errors.append("BATCH_SIZE must be at least 1")

        if self.max_items < 1:
            errors.append("MAX_ITEMS must be at least 1")

        if self.cooldown_ms < 0:
            errors.append("COOLDOWN_MS must not be negative")

        if self.max_retries < 1:
            errors.append("MAX_RETRIES must be at least 1")

        if self.retry_base_delay_ms < 0:
            errors.append("RETRY_BASE_DELAY_MS must not be negative")

        if self.retry_backoff_factor < 1:
            errors.append("RETRY_BACKOFF_FACTOR must be at least 1")

        if self.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            errors.append(f"LOG_LEVEL is not a valid level: {self.log_level}")

        return errors

    def validate_credentials(self) -> list[str]:
        """Credential checks, only relevant when a live LinkedIn session is used."""
        errors = []
        if not self.linkedin_email:
            errors.append("LINKEDIN_EMAIL is required")
        if not self.linkedin_password:
            errors.append("LINKEDIN_PASSWORD is required")
        return errors

    def build_target(self, job_id: str, **overrides: Any) -> ExtractionTarget:
        """
        Build an ExtractionTarget from configured defaults

        Args:
                job_id: LinkedIn job posting id
                **overrides: ExtractionTarget fields; None values fall back to config

        Returns:
                ExtractionTarget
        """
        values: dict[str, Any] = {
            "max_items": self.max_items,
            "batch_size": self.batch_size,
            "cooldown_ms": self.cooldown_ms,
            "fetch_profiles": self.fetch_profiles,
            "download_cvs": self.download_cvs,
            "item_timeout_seconds": self.item_timeout_seconds,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return ExtractionTarget(job_id=job_id, **values)


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config() -> Config:
    """Reload configuration from .env"""
    global _config
    load_dotenv(override=True)
    _config = Config()
    return _config
