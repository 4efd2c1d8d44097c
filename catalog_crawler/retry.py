from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, Optional, TypeVar

from .errors import RetriesExhausted

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Verdict(str, Enum):
    """How a failed attempt should be treated."""

    FATAL = "fatal"
    TRANSIENT = "transient"


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    FATAL = "fatal"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryOutcome(Generic[T]):
    kind: OutcomeKind
    attempts: int
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.SUCCESS

    def __post_init__(self) -> None:
        if self.kind is not OutcomeKind.SUCCESS and self.error is None:
            raise ValueError(f"{self.kind.value} outcome needs the error that ended the loop")

    def unwrap(self) -> T:
        """Return the value, or raise the error that ended the loop."""
        if self.kind is OutcomeKind.SUCCESS:
            return self.value  # type: ignore[return-value]
        raise self.error  # type: ignore[misc]


class BackoffStrategy:
    """Exponential backoff with jitter for the pause between attempts.

    Computes base * 2^(attempt-1) plus up to 10% random jitter, capped at
    max_seconds. A base of zero disables sleeping entirely."""

    def __init__(self, base_seconds: float = 0.0, max_seconds: float = 10.0) -> None:
        self._base = base_seconds
        self._max = max_seconds

    def get_sleep(self, attempt: int) -> float:
        if self._base <= 0:
            return 0.0
        exp = min(self._max, self._base * (2 ** max(attempt - 1, 0)))
        return exp + random.uniform(0, exp * 0.1)


Classifier = Callable[[BaseException], Verdict]
Recovery = Callable[[], Any]


class RetryExecutor:
    """Bounded retry loop with pluggable error classification and recovery.

    `classify` decides whether an error is worth another attempt; `recover`
    runs between attempts (typically an identity rotation). The two are kept
    apart so the same executor serves network fetches and parse attempts
    with different policies.
    """

    def __init__(
        self,
        backoff: Optional[BackoffStrategy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._backoff = backoff or BackoffStrategy()
        self._sleep = sleep

    def execute(
        self,
        operation: Callable[[], T],
        classify: Classifier,
        recover: Optional[Recovery] = None,
        max_attempts: int = 3,
        name: Optional[str] = None,
    ) -> RetryOutcome[T]:
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        name = name or getattr(operation, "__name__", "operation")

        last_error: Optional[BaseException] = None
        for attempt in range(1, max_attempts + 1):
            try:
                value = operation()
            except Exception as exc:  # noqa: BLE001
                last_error = exc
            else:
                return RetryOutcome(OutcomeKind.SUCCESS, attempts=attempt, value=value)

            if classify(last_error) is Verdict.FATAL:
                logger.debug("%s: fatal error on attempt %d: %r", name, attempt, last_error)
                return RetryOutcome(OutcomeKind.FATAL, attempts=attempt, error=last_error)

            logger.debug("%s: transient error on attempt %d/%d: %r", name, attempt, max_attempts, last_error)
            if attempt == max_attempts:
                break

            pause = self._backoff.get_sleep(attempt)
            if pause > 0:
                self._sleep(pause)

            if recover is not None:
                try:
                    recover()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("%s: recovery failed after attempt %d: %r", name, attempt, exc)
                    return RetryOutcome(OutcomeKind.FATAL, attempts=attempt, error=exc)

        return RetryOutcome(
            OutcomeKind.EXHAUSTED,
            attempts=max_attempts,
            error=RetriesExhausted(name, max_attempts, last_error),
        )

    def run(
        self,
        operation: Callable[[], T],
        classify: Classifier,
        recover: Optional[Recovery] = None,
        max_attempts: int = 3,
        name: Optional[str] = None,
    ) -> T:
        """Like execute(), but returns the value or raises the terminal error."""
        return self.execute(operation, classify, recover, max_attempts, name).unwrap()
