"""Tests for the fixed-delay retry combinator."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from meetings.retry import retry_with_fixed_delay


class FakeSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, delay):
        self.calls.append(delay)


def sequence(*values):
    """An async action returning ``values`` one per call (exceptions are raised)."""
    it = iter(values)

    async def action():
        value = next(it)
        if isinstance(value, Exception):
            raise value
        return value

    return action


class TestRetryWithFixedDelay:
    async def test_first_attempt_succeeds(self):
        sleep = FakeSleep()
        outcome = await retry_with_fixed_delay(
            sequence("ok"), attempts=3, delay=2.0, predicate=bool, sleep=sleep
        )
        assert outcome.succeeded
        assert outcome.value == "ok"
        assert outcome.attempts == 1
        assert sleep.calls == [2.0]

    async def test_succeeds_on_last_attempt(self):
        sleep = FakeSleep()
        outcome = await retry_with_fixed_delay(
            sequence(None, None, "link"), attempts=3, delay=2.0, predicate=bool, sleep=sleep
        )
        assert outcome.succeeded
        assert outcome.value == "link"
        assert outcome.attempts == 3
        assert sleep.calls == [2.0, 2.0, 2.0]

    async def test_gives_up_after_attempts(self):
        calls = []

        async def action():
            calls.append(1)
            return None

        outcome = await retry_with_fixed_delay(
            action, attempts=3, delay=0.5, predicate=bool, sleep=FakeSleep()
        )
        assert not outcome.succeeded
        assert outcome.value is None
        assert outcome.attempts == 3
        assert len(calls) == 3

    async def test_exception_counts_as_failed_attempt(self):
        outcome = await retry_with_fixed_delay(
            sequence(RuntimeError("503"), "ok"),
            attempts=3, delay=1.0, predicate=bool, sleep=FakeSleep(),
        )
        assert outcome.succeeded
        assert outcome.attempts == 2

    async def test_last_value_returned_on_failure(self):
        outcome = await retry_with_fixed_delay(
            sequence({"n": 1}, {"n": 2}),
            attempts=2, delay=1.0, predicate=lambda v: v["n"] > 5, sleep=FakeSleep(),
        )
        assert not outcome.succeeded
        assert outcome.value == {"n": 2}

    async def test_zero_attempts(self):
        sleep = FakeSleep()
        outcome = await retry_with_fixed_delay(
            sequence(), attempts=0, delay=1.0, predicate=bool, sleep=sleep
        )
        assert not outcome.succeeded
        assert outcome.attempts == 0
        assert sleep.calls == []
