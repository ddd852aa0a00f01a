"""Bounded, deadline-aware retries."""

import logging
import random
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Sequence

from .config import DEFAULT_RETRY_BACKOFF_CAP
from .exceptions import (
    NetworkError,
    ServerError,
    TransferCancelledError,
    TransferClientError,
)

logger = logging.getLogger(__name__)


class RetryAction(Enum):
    NO_RETRY = 0
    RETRY = 1


class StatusCodeClassifier:
    """Classify errors by kind and HTTP status code.

    Network failures, throttling (429) and server errors are retried, except
    501 Not Implemented and 507 Insufficient Storage which will not get better.
    """

    NON_RETRYABLE_SERVER_CODES = frozenset({501, 507})

    def classify(self, error: Optional[BaseException]) -> RetryAction:
        if error is None:
            return RetryAction.NO_RETRY
        if isinstance(error, (TransferClientError, TransferCancelledError)):
            return RetryAction.NO_RETRY
        if isinstance(error, NetworkError):
            return RetryAction.RETRY
        if isinstance(error, ServerError):
            code = error.status_code
            if code == 429:
                return RetryAction.RETRY
            if code >= 500 and code not in self.NON_RETRYABLE_SERVER_CODES:
                return RetryAction.RETRY
            return RetryAction.NO_RETRY
        if isinstance(error, (ConnectionError, TimeoutError)):
            return RetryAction.RETRY
        return RetryAction.NO_RETRY


class RetryContext:
    """Cancellation signal plus optional absolute deadline (``time.monotonic`` clock)."""

    def __init__(
        self,
        cancelled: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> None:
        self.cancelled = cancelled
        self.deadline = deadline

    @classmethod
    def with_timeout(
        cls, timeout: Optional[float], cancelled: Optional[threading.Event] = None
    ) -> "RetryContext":
        deadline = time.monotonic() + timeout if timeout is not None else None
        return cls(cancelled=cancelled, deadline=deadline)

    def is_cancelled(self) -> bool:
        return self.cancelled is not None and self.cancelled.is_set()

    def worth_waiting(self, wait: float) -> bool:
        """Return False if cancelled or if sleeping ``wait`` seconds would pass the deadline."""
        if self.is_cancelled():
            return False
        if self.deadline is None:
            return True
        return time.monotonic() + wait <= self.deadline


def exponential_backoff(
    n: int, base: float, cap: float = DEFAULT_RETRY_BACKOFF_CAP
) -> List[float]:
    """Return ``n`` waits doubling from ``base``, each capped at ``cap`` seconds."""
    return [min(base * (2**i), cap) for i in range(n)]


class RetryPolicy:
    """Run work once, then retry per the backoff sequence while the classifier allows it.

    The length of ``backoff`` is the maximum number of retries, so ``work`` runs
    at most ``1 + len(backoff)`` times. Each wait is perturbed by a random
    factor in ``[-jitter, +jitter]``.
    """

    def __init__(
        self,
        backoff: Sequence[float],
        jitter: float = 0.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.backoff = list(backoff)
        self.jitter = 0.0
        self.set_jitter(jitter)
        self._sleep = sleep

    def set_jitter(self, jitter: float) -> None:
        """Set the jitter factor; values outside [0, 1] are ignored."""
        if 0 <= jitter <= 1:
            self.jitter = jitter

    def calc_sleep(self, attempt: int) -> float:
        base = self.backoff[attempt]
        if self.jitter == 0:
            return base
        return max(0.0, base + base * random.uniform(-self.jitter, self.jitter))

    def run(
        self,
        ctx: Optional[RetryContext],
        work: Callable[[], None],
        classifier: Optional[StatusCodeClassifier] = None,
        description: str = "operation",
    ) -> Optional[BaseException]:
        """Execute ``work`` with retries and return the last error, or None on success."""
        classifier = classifier or StatusCodeClassifier()
        error = _attempt(work)
        attempt = 0
        while attempt < len(self.backoff) and classifier.classify(error) == RetryAction.RETRY:
            wait = self.calc_sleep(attempt)
            if ctx is not None and not ctx.worth_waiting(wait):
                logger.warning(f"{description}: giving up, no time left to retry after: {error}")
                return error
            logger.warning(
                f"{description}: attempt {attempt + 1} failed: {error}; retrying in {wait:.2f}s"
            )
            self._sleep(wait)
            error = _attempt(work)
            attempt += 1
        return error

    def call(
        self,
        ctx: Optional[RetryContext],
        work: Callable[[], None],
        classifier: Optional[StatusCodeClassifier] = None,
        description: str = "operation",
    ) -> None:
        """Like :meth:`run`, but raise the last error."""
        error = self.run(ctx, work, classifier, description)
        if error is not None:
            raise error


def _attempt(work: Callable[[], None]) -> Optional[BaseException]:
    try:
        work()
    except Exception as e:
        return e
    return None
