import time

import pytest

from scanworker.errors import OperationTimeout
from scanworker.scanner.poller import OperationStatus, await_completion


class CountingStatus:
    def __init__(self, complete_on=None):
        self.complete_on = complete_on
        self.calls = 0

    def __call__(self):
        self.calls += 1
        done = self.complete_on is not None and self.calls >= self.complete_on
        return OperationStatus(is_complete=done, progress="100" if done else "42")


def test_times_out_after_exactly_max_attempts_polls():
    status = CountingStatus()
    start = time.monotonic()

    with pytest.raises(OperationTimeout):
        await_completion(status, max_attempts=3, interval_ms=10)

    elapsed = time.monotonic() - start
    assert status.calls == 3
    assert elapsed >= 0.025


def test_each_unsuccessful_poll_is_followed_by_one_sleep():
    sleeps = []
    status = CountingStatus()

    with pytest.raises(OperationTimeout):
        await_completion(status, max_attempts=3, interval_ms=10, sleep=sleeps.append)

    assert sleeps == [0.01, 0.01, 0.01]


def test_returns_number_of_checks_when_complete():
    sleeps = []
    status = CountingStatus(complete_on=3)

    checks = await_completion(status, max_attempts=10, interval_ms=5, sleep=sleeps.append)

    assert checks == 3
    assert status.calls == 3
    assert len(sleeps) == 2


def test_complete_on_first_poll_never_sleeps():
    sleeps = []
    assert await_completion(CountingStatus(complete_on=1), sleep=sleeps.append) == 1
    assert sleeps == []


def test_timeout_message_names_operation_and_budget():
    with pytest.raises(OperationTimeout) as exc:
        await_completion(
            CountingStatus(), max_attempts=100, interval_ms=2000,
            operation="Spider scan", sleep=lambda _: None,
        )
    assert str(exc.value) == "Spider scan timed out after 200 seconds"
