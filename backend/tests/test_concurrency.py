import threading
import time
import unittest

from trashdrop.errors import ActivationError, BATCH_NOT_FOUND, BACKEND_ERROR
from trashdrop.services.concurrency import (
    AttemptTimeout,
    backoff_delay,
    is_timeout_error,
    run_with_timeout,
    with_retry,
)


class BackoffTests(unittest.TestCase):
    def test_doubles_then_caps(self):
        delays = [backoff_delay(n, 1.5, 5.0) for n in range(1, 6)]
        self.assertEqual(delays, [1.5, 3.0, 5.0, 5.0, 5.0])

    def test_zero_base(self):
        self.assertEqual(backoff_delay(3, 0, 5.0), 0)


class RunWithTimeoutTests(unittest.TestCase):
    def test_returns_value(self):
        self.assertEqual(run_with_timeout(lambda: 42, 1.0), 42)

    def test_inline_when_no_timeout(self):
        seen = []
        run_with_timeout(lambda: seen.append(threading.current_thread()), None)
        self.assertIs(seen[0], threading.current_thread())

    def test_times_out(self):
        release = threading.Event()
        try:
            with self.assertRaises(AttemptTimeout):
                run_with_timeout(lambda: release.wait(5), 0.05)
        finally:
            release.set()


class WithRetryTests(unittest.TestCase):
    def setUp(self):
        self.sleeps = []

    def _retry(self, func, **kwargs):
        kwargs.setdefault("timeout", None)
        kwargs.setdefault("sleep", self.sleeps.append)
        return with_retry(func, **kwargs)

    def test_success_first_try(self):
        outcome = self._retry(lambda: "ok")
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.result, "ok")
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(self.sleeps, [])

    def test_always_failing_makes_exactly_max_attempts(self):
        calls = []

        def failing():
            calls.append(1)
            raise ActivationError(BACKEND_ERROR, f"boom {len(calls)}")

        outcome = self._retry(failing, max_retries=3, backoff_base=1.5, backoff_max=5.0)
        self.assertFalse(outcome.ok)
        self.assertEqual(len(calls), 3)
        self.assertEqual(outcome.attempts, 3)
        # Last error verbatim
        self.assertEqual(outcome.error.message, "boom 3")
        self.assertEqual(outcome.error.code, BACKEND_ERROR)
        # Backoff between attempts only
        self.assertEqual(self.sleeps, [1.5, 3.0])
        self.assertFalse(outcome.timed_out)

    def test_recovers_on_second_attempt(self):
        calls = []

        def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise ConnectionError("network down")
            return "done"

        outcome = self._retry(flaky, max_retries=3, backoff_base=0)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.attempts, 2)

    def test_fails_twice_then_succeeds_with_real_backoff(self):
        stamps = []

        def flaky():
            stamps.append(time.monotonic())
            if len(stamps) < 3:
                raise ConnectionError("network down")
            return "ok"

        outcome = with_retry(flaky, timeout=None, max_retries=3, backoff_base=0.02, backoff_max=0.05)
        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.attempts, 3)
        # Second backoff is base * 2
        self.assertGreaterEqual(stamps[2] - stamps[1], 0.035)

    def test_permanent_error_is_not_retried(self):
        calls = []

        def not_found():
            calls.append(1)
            raise ActivationError(BATCH_NOT_FOUND, "missing")

        outcome = self._retry(
            not_found,
            max_retries=3,
            should_retry=lambda exc: not getattr(exc, "is_permanent", False),
        )
        self.assertEqual(len(calls), 1)
        self.assertEqual(outcome.attempts, 1)
        self.assertEqual(outcome.error.code, BATCH_NOT_FOUND)

    def test_timeout_flag(self):
        release = threading.Event()
        try:
            outcome = self._retry(lambda: release.wait(5), timeout=0.05, max_retries=2, backoff_base=0)
        finally:
            release.set()
        self.assertFalse(outcome.ok)
        self.assertTrue(outcome.timed_out)
        self.assertEqual(outcome.attempts, 2)
        self.assertEqual(outcome.error.code, "TIMEOUT")

    def test_on_retry_callback(self):
        events = []
        self._retry(
            lambda: 1 / 0,
            max_retries=2,
            backoff_base=0.5,
            on_retry=lambda attempt, exc, delay: events.append((attempt, type(exc), delay)),
        )
        self.assertEqual(events, [(1, ZeroDivisionError, 0.5)])


class TimeoutDetectionTests(unittest.TestCase):
    def test_message_based(self):
        self.assertTrue(is_timeout_error(RuntimeError("Request timed out")))
        self.assertTrue(is_timeout_error(AttemptTimeout("x")))
        self.assertFalse(is_timeout_error(RuntimeError("refused")))
        self.assertFalse(is_timeout_error(None))


if __name__ == "__main__":
    unittest.main()
