"""
Retry handling with exponential backoff and jitter.

Wraps one unit of per-item work (profile fetch, CV download), classifies
failures as retryable or fatal, and sleeps between attempts. The delay after
failed attempt ``n`` (1-based) is ``base_delay * backoff_factor ** (n - 1)``
scaled by a jitter factor drawn from ``jitter``.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from concurrent.futures import wait as futures_wait
from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from selenium.common.exceptions import (
    NoSuchWindowException,
    TimeoutException,
    WebDriverException,
)

from orchestration.errors import (
    FatalError,
    ItemTimeoutError,
    OperationCancelledError,
    RetriesExhaustedError,
    RetryableError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FailureKind(str, Enum):
    RETRYABLE = "retryable"
    FATAL = "fatal"


DEFAULT_RETRYABLE_KEYWORDS: tuple[str, ...] = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "429",
    "temporarily",
    "connection reset",
    "connection refused",
    "network",
)

DEFAULT_FATAL_KEYWORDS: tuple[str, ...] = (
    "auth",
    "login",
    "session expired",
    "permission",
    "forbidden",
    "403",
    "not found",
    "404",
    "captcha",
    "security check",
)


class FailureClassifier:
    """
    Decide whether an exception is worth retrying.

    Explicit types win over keywords: FatalError subclasses are always fatal and
    RetryableError subclasses always retryable. Other exceptions are matched by
    type, then by message keywords (fatal keywords first), then fall back to
    ``default``.
    """

    def __init__(
        self,
        retryable_types: Iterable[type[BaseException]] = (
            TimeoutError,
            ConnectionError,
            TimeoutException,
        ),
        fatal_types: Iterable[type[BaseException]] = (PermissionError, NoSuchWindowException),
        retryable_keywords: Iterable[str] = DEFAULT_RETRYABLE_KEYWORDS,
        fatal_keywords: Iterable[str] = DEFAULT_FATAL_KEYWORDS,
        default: FailureKind = FailureKind.RETRYABLE,
    ) -> None:
        self.retryable_types = tuple(retryable_types)
        self.fatal_types = tuple(fatal_types)
        self.retryable_keywords = tuple(k.lower() for k in retryable_keywords if k)
        self.fatal_keywords = tuple(k.lower() for k in fatal_keywords if k)
        self.default = default

    def classify(self, error: BaseException) -> FailureKind:
        if isinstance(error, FatalError):
            return FailureKind.FATAL
        if isinstance(error, RetryableError):
            return FailureKind.RETRYABLE
        if self.fatal_types and isinstance(error, self.fatal_types):
            return FailureKind.FATAL
        if self.retryable_types and isinstance(error, self.retryable_types):
            return FailureKind.RETRYABLE

        message = str(error).lower()
        if any(keyword in message for keyword in self.fatal_keywords):
            return FailureKind.FATAL
        if any(keyword in message for keyword in self.retryable_keywords):
            return FailureKind.RETRYABLE
        if isinstance(error, WebDriverException):
            return FailureKind.RETRYABLE
        return self.default

    __call__ = classify


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    value: T
    attempts: int


RetryCallback = Callable[[int, float, BaseException], None]


class RetryPolicy:
    """Bounded retries with exponential backoff and jitter."""

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 5.0,
        backoff_factor: float = 1.5,
        jitter: tuple[float, float] = (0.9, 1.1),
        max_delay: float | None = None,
        classifier: Callable[[BaseException], FailureKind] | None = None,
        sleep_fn: Callable[[float], Any] = time.sleep,
        rng: random.Random | None = None,
    ) -> None:
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if jitter[0] <= 0 or jitter[0] > jitter[1]:
            raise ValueError("jitter must be a (low, high) pair with 0 < low <= high")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.backoff_factor = backoff_factor
        self.jitter = jitter
        self.max_delay = max_delay
        self.classifier = classifier or FailureClassifier()
        self.sleep_fn = sleep_fn
        self.rng = rng or random.Random()
        self._call_lock = threading.Lock()
        self._executor: ThreadPoolExecutor | None = None
        self._abandoned: Future | None = None

    def nominal_delay(self, attempt: int) -> float:
        """Delay after failed attempt ``attempt`` (1-based) before jitter."""
        delay = self.base_delay * self.backoff_factor ** (attempt - 1)
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    def compute_delay(self, attempt: int) -> float:
        return self.nominal_delay(attempt) * self.rng.uniform(*self.jitter)

    def execute(
        self,
        func: Callable[..., T],
        *args: Any,
        timeout: float | None = None,
        should_abort: Callable[[], bool] | None = None,
        on_retry: RetryCallback | None = None,
        label: str = "operation",
        **kwargs: Any,
    ) -> RetryOutcome[T]:
        """
        Run ``func`` until it succeeds, fails fatally, or runs out of attempts.

        Args:
            func: Unit of work
            timeout: Per-attempt timeout in seconds; exceeding it is retryable
            should_abort: Checked before every retry attempt (cooperative cancel)
            on_retry: Called as on_retry(next_attempt, delay, error) before sleeping
            label: Used in log lines

        Returns:
            RetryOutcome with the value and the number of attempts used

        Raises:
            FatalError (or the original error when it is one) on fatal classification
            RetriesExhaustedError when every attempt failed with a retryable error
            OperationCancelledError when should_abort() turned true between attempts
        """
        last_error: BaseException | None = None

        for attempt in range(1, self.max_retries + 1):
            if attempt > 1 and should_abort is not None and should_abort():
                logger.info("%s: cancelled before attempt %s", label, attempt)
                raise OperationCancelledError(attempt - 1, last_error)

            try:
                value = self._call(func, args, kwargs, timeout)
                if attempt > 1:
                    logger.info("%s succeeded on attempt %s/%s", label, attempt, self.max_retries)
                return RetryOutcome(value=value, attempts=attempt)
            except Exception as exc:
                last_error = exc

            if self.classifier(last_error) is FailureKind.FATAL:
                logger.error("%s failed fatally on attempt %s: %s", label, attempt, last_error)
                if isinstance(last_error, FatalError):
                    raise last_error
                raise FatalError(str(last_error) or type(last_error).__name__) from last_error

            if attempt >= self.max_retries:
                break

            delay = self.compute_delay(attempt)
            logger.warning(
                "%s failed on attempt %s/%s: %s. Retrying in %.2fs",
                label,
                attempt,
                self.max_retries,
                last_error,
                delay,
            )
            if on_retry is not None:
                on_retry(attempt + 1, delay, last_error)
            self.sleep_fn(delay)

        logger.error("%s: max retries (%s) reached: %s", label, self.max_retries, last_error)
        raise RetriesExhaustedError(last_error, self.max_retries)

    def close(self) -> None:
        """Release the worker thread used for timed calls. The policy stays usable."""
        with self._call_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None

    def _call(self, func: Callable[..., T], args: tuple, kwargs: dict, timeout: float | None) -> T:
        # Calls never overlap: a timed-out call still holds the collaborator,
        # so the next call waits for it to return first.
        with self._call_lock:
            self._wait_for_abandoned()
            if timeout is None:
                return func(*args, **kwargs)

            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="item-call")
            future = self._executor.submit(func, *args, **kwargs)
            try:
                return future.result(timeout=timeout)
            except FutureTimeoutError as exc:
                if future.done():
                    raise
                self._abandoned = future
                raise ItemTimeoutError(f"Operation timed out after {timeout:.1f}s") from exc

    def _wait_for_abandoned(self) -> None:
        abandoned = self._abandoned
        if abandoned is None:
            return
        if not abandoned.done():
            logger.warning("Waiting for a timed-out call to return before the next call")
        futures_wait([abandoned])
        self._abandoned = None
