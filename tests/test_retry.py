"""Tests for RetryExecutor and BackoffStrategy."""

import unittest

from catalog_crawler.errors import RetriesExhausted, TransportError
from catalog_crawler.retry import (
    BackoffStrategy,
    OutcomeKind,
    RetryExecutor,
    RetryOutcome,
    Verdict,
)


def always_transient(_):
    return Verdict.TRANSIENT


class Counter:
    def __init__(self, failures=0, error=ValueError("flaky")):
        self.failures = failures
        self.error = error
        self.calls = 0
        self.recovers = 0

    def operation(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "done"

    def recover(self):
        self.recovers += 1


class TestRetryExecutor(unittest.TestCase):
    """Verify attempt counting, classification and recovery."""

    def test_succeeds_after_two_transient_failures(self):
        """Two transient failures then success: 3 operations, 2 recoveries."""
        c = Counter(failures=2)
        outcome = RetryExecutor().execute(c.operation, always_transient, c.recover, max_attempts=5)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.value, "done")
        self.assertEqual(outcome.attempts, 3)
        self.assertEqual(c.calls, 3)
        self.assertEqual(c.recovers, 2)

    def test_exhaustion_calls_recover_one_less_than_attempts(self):
        """Always transient: k operations, k-1 recoveries, RetriesExhausted."""
        c = Counter(failures=100)
        outcome = RetryExecutor().execute(c.operation, always_transient, c.recover, max_attempts=4, name="fetch")
        self.assertEqual(outcome.kind, OutcomeKind.EXHAUSTED)
        self.assertEqual(c.calls, 4)
        self.assertEqual(c.recovers, 3)
        self.assertIsInstance(outcome.error, RetriesExhausted)
        self.assertEqual(outcome.error.attempts, 4)
        self.assertIn("fetch", str(outcome.error))

    def test_fatal_error_stops_immediately(self):
        """A fatal verdict returns at once without recovering."""
        c = Counter(failures=3, error=KeyError("bad"))
        outcome = RetryExecutor().execute(c.operation, lambda e: Verdict.FATAL, c.recover, max_attempts=5)
        self.assertEqual(outcome.kind, OutcomeKind.FATAL)
        self.assertIsInstance(outcome.error, KeyError)
        self.assertEqual(c.calls, 1)
        self.assertEqual(c.recovers, 0)

    def test_failed_recovery_is_fatal(self):
        """If the recovery action itself fails, its error ends the loop."""
        c = Counter(failures=5)

        def recover():
            raise TransportError("no new identity")

        outcome = RetryExecutor().execute(c.operation, always_transient, recover, max_attempts=5)
        self.assertEqual(outcome.kind, OutcomeKind.FATAL)
        self.assertIsInstance(outcome.error, TransportError)
        self.assertEqual(c.calls, 1)

    def test_run_unwraps_or_raises(self):
        """run() returns the value, or raises the terminal error."""
        executor = RetryExecutor()
        self.assertEqual(executor.run(Counter(failures=1).operation, always_transient, max_attempts=2), "done")
        with self.assertRaises(RetriesExhausted):
            executor.run(Counter(failures=9).operation, always_transient, max_attempts=2)

    def test_rejects_zero_attempts(self):
        with self.assertRaises(ValueError):
            RetryExecutor().execute(lambda: 1, always_transient, max_attempts=0)

    def test_sleeps_between_attempts_with_backoff(self):
        """A configured backoff pauses once per retried attempt."""
        pauses = []
        executor = RetryExecutor(BackoffStrategy(base_seconds=1.0, max_seconds=30.0), sleep=pauses.append)
        executor.execute(Counter(failures=2).operation, always_transient, max_attempts=5)
        self.assertEqual(len(pauses), 2)
        self.assertLess(pauses[0], pauses[1])


class TestRetryOutcome(unittest.TestCase):
    def test_unwrap_raises_terminal_error(self):
        error = TransportError("gone")
        with self.assertRaises(TransportError):
            RetryOutcome(OutcomeKind.FATAL, attempts=1, error=error).unwrap()

    def test_failed_outcome_requires_error(self):
        with self.assertRaises(ValueError):
            RetryOutcome(OutcomeKind.EXHAUSTED, attempts=3)


class TestBackoffStrategy(unittest.TestCase):
    """Verify exponential backoff produces correct sleep durations."""

    def test_zero_base_disables_sleep(self):
        self.assertEqual(BackoffStrategy().get_sleep(3), 0.0)

    def test_first_attempt_returns_base(self):
        sleep = BackoffStrategy(base_seconds=1.0, max_seconds=30.0).get_sleep(1)
        # base * 2^0 = 1.0, plus up to 10% jitter
        self.assertGreaterEqual(sleep, 1.0)
        self.assertLessEqual(sleep, 1.1)

    def test_respects_max_seconds(self):
        sleep = BackoffStrategy(base_seconds=1.0, max_seconds=5.0).get_sleep(20)
        self.assertLessEqual(sleep, 5.5)


if __name__ == "__main__":
    unittest.main()
