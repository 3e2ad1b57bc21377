"""Error taxonomy for applicant extraction runs."""

from __future__ import annotations


class ExtractionError(Exception):
    """Base class for every error raised by the extraction pipeline."""


class ValidationError(ExtractionError, ValueError):
    """Bad run configuration or an unknown event name. Raised before any state change."""


class InvalidStateError(ExtractionError):
    """A control call was issued in a phase that does not accept it."""

    def __init__(self, action: str, phase: str) -> None:
        super().__init__(f"Cannot {action} while extraction is {phase}")
        self.action = action
        self.phase = phase


class RetryableError(ExtractionError):
    """Transient failure (network hiccup, rate limit). Worth another attempt."""


class ItemTimeoutError(RetryableError):
    """A per-item operation exceeded its timeout."""


class RateLimitedError(RetryableError):
    """Upstream signalled that we are sending requests too fast."""


class FatalError(ExtractionError):
    """Failure that ends the run (expired session, missing permission, ...)."""


class NavigationError(FatalError):
    """The applicant source did not recognise the upstream page structure."""


class ProfileNotFoundError(FatalError):
    """A profile is permanently unavailable."""


class RetriesExhaustedError(ExtractionError):
    """Every attempt failed with a retryable error."""

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(f"Gave up after {attempts} attempt(s): {last_error}")
        self.last_error = last_error
        self.attempts = attempts


class OperationCancelledError(ExtractionError):
    """Cancellation was requested before the next retry attempt."""

    def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
        super().__init__(f"Cancelled after {attempts} attempt(s)")
        self.attempts = attempts
        self.last_error = last_error
