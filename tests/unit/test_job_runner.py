"""
Unit tests for the thread pool job runner.

Run: pytest tests/unit/test_job_runner.py -v
"""

import threading
import pytest
from unittest.mock import MagicMock

from services.job_runner import ThreadPoolJobRunner, backoff_delay_seconds

from tests.factories import ImportJobFactory

WAIT = 5


def _payload(job_id: str):
    return ImportJobFactory.payload(ImportJobFactory.create_row(id=job_id))


@pytest.fixture
def runners():
    created = []

    def make(handler, max_workers=2):
        runner = ThreadPoolJobRunner(handler, max_workers=max_workers)
        created.append(runner)
        return runner

    yield make
    for runner in created:
        runner.shutdown(wait=True)


class TestBackoff:
    """Tests for backoff_delay_seconds()"""

    def test_doubles_per_attempt(self):
        assert backoff_delay_seconds(1, 5000) == 5.0
        assert backoff_delay_seconds(2, 5000) == 10.0
        assert backoff_delay_seconds(3, 5000) == 20.0

    def test_zero_backoff(self):
        assert backoff_delay_seconds(4, 0) == 0


class TestEnqueue:
    """Tests for ThreadPoolJobRunner.enqueue()"""

    def test_runs_handler_with_payload(self, runners):
        # Arrange
        handler = MagicMock(return_value="done")
        runner = runners(handler)
        payload = _payload("job-1")

        # Act
        future = runner.enqueue("job-1", payload, attempts=3, backoff_delay_ms=0)

        # Assert
        assert future.result(timeout=WAIT) == "done"
        handler.assert_called_once_with(payload)
        assert runner.is_tracked("job-1") is False

    def test_retries_until_success(self, runners):
        handler = MagicMock(side_effect=[RuntimeError("db down"), RuntimeError("db down"), "ok"])
        runner = runners(handler)

        future = runner.enqueue("job-1", _payload("job-1"), attempts=3, backoff_delay_ms=0)

        assert future.result(timeout=WAIT) == "ok"
        assert handler.call_count == 3

    def test_attempts_exhausted_raises(self, runners):
        handler = MagicMock(side_effect=RuntimeError("still down"))
        runner = runners(handler)

        future = runner.enqueue("job-1", _payload("job-1"), attempts=2, backoff_delay_ms=0)

        with pytest.raises(RuntimeError, match="still down"):
            future.result(timeout=WAIT)
        assert handler.call_count == 2
        assert runner.is_tracked("job-1") is False


class TestCancel:
    """Tests for ThreadPoolJobRunner.cancel()"""

    def test_unknown_job(self, runners):
        runner = runners(MagicMock())
        assert runner.cancel("nope") is False

    def test_queued_job_is_dropped(self, runners):
        # Arrange
        release = threading.Event()
        started = threading.Event()
        calls = []

        def handler(payload):
            calls.append(payload.job_id)
            started.set()
            release.wait(WAIT)

        runner = runners(handler, max_workers=1)
        first = runner.enqueue("job-1", _payload("job-1"), attempts=1)
        started.wait(WAIT)
        second = runner.enqueue("job-2", _payload("job-2"), attempts=1)

        # Act
        cancelled = runner.cancel("job-2")
        release.set()
        first.result(timeout=WAIT)

        # Assert
        assert cancelled is True
        assert second.cancelled() is True
        assert calls == ["job-1"]
        assert runner.is_tracked("job-2") is False

    def test_waiting_retry_is_abandoned(self, runners):
        called = threading.Event()

        def handler(payload):
            called.set()
            raise RuntimeError("transient")

        runner = runners(handler)
        future = runner.enqueue("job-1", _payload("job-1"), attempts=3, backoff_delay_ms=60_000)
        called.wait(WAIT)

        runner.cancel("job-1")

        assert future.result(timeout=WAIT) is None
        assert runner.is_tracked("job-1") is False
