"""
In-process job runner.

At-least-once execution of import jobs on a thread pool. A failing job
is retried up to `attempts` times with exponential backoff
(backoff_ms, 2x backoff_ms, 4x backoff_ms, ...). Cancel is best effort:
a job that has not started is dropped, a waiting retry is abandoned,
a running attempt finishes its current step.
"""

import threading
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import structlog

from config import settings
from models.import_job import ImportJobPayload

logger = structlog.get_logger(__name__)

JobHandler = Callable[[ImportJobPayload], Any]


class JobRunner(ABC):
    """Executes import jobs outside the request."""

    @abstractmethod
    def enqueue(
        self,
        job_id: str,
        payload: ImportJobPayload,
        attempts: Optional[int] = None,
        backoff_delay_ms: Optional[int] = None
    ) -> None:
        pass

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Best-effort removal. True if the runner knew the job."""


@dataclass
class _RunnerEntry:
    future: Optional[Future] = None
    cancelled: threading.Event = field(default_factory=threading.Event)


def backoff_delay_seconds(attempt: int, backoff_delay_ms: int) -> float:
    """Delay after failed attempt number `attempt` (1-based)."""
    return backoff_delay_ms * (2 ** (attempt - 1)) / 1000


class ThreadPoolJobRunner(JobRunner):
    """
    ThreadPoolExecutor-backed runner.

    Jobs run concurrently up to max_workers; each job is one handler
    call per attempt.
    """

    def __init__(self, handler: JobHandler, max_workers: Optional[int] = None):
        self.handler = handler
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.job_runner_max_workers,
            thread_name_prefix="import-job"
        )
        self._lock = threading.Lock()
        self._jobs: dict[str, _RunnerEntry] = {}

    def enqueue(
        self,
        job_id: str,
        payload: ImportJobPayload,
        attempts: Optional[int] = None,
        backoff_delay_ms: Optional[int] = None
    ) -> Future:
        attempts = attempts or settings.import_job_attempts
        if backoff_delay_ms is None:
            backoff_delay_ms = settings.import_job_backoff_ms

        entry = _RunnerEntry()
        with self._lock:
            self._jobs[job_id] = entry
            entry.future = self._executor.submit(self._run, job_id, payload, attempts, backoff_delay_ms, entry)

        logger.info("import_job_enqueued", job_id=job_id, attempts=attempts, backoff_delay_ms=backoff_delay_ms)
        return entry.future

    def _run(
        self,
        job_id: str,
        payload: ImportJobPayload,
        attempts: int,
        backoff_delay_ms: int,
        entry: _RunnerEntry
    ) -> Any:
        try:
            for attempt in range(1, attempts + 1):
                if entry.cancelled.is_set():
                    logger.info("import_job_dropped", job_id=job_id, attempt=attempt)
                    return None

                try:
                    return self.handler(payload)
                except Exception as e:
                    if attempt == attempts:
                        logger.error(
                            "import_job_attempts_exhausted",
                            job_id=job_id,
                            attempts=attempts,
                            error=str(e)
                        )
                        raise

                    delay = backoff_delay_seconds(attempt, backoff_delay_ms)
                    logger.warning(
                        "import_job_attempt_failed",
                        job_id=job_id,
                        attempt=attempt,
                        retry_in_seconds=delay,
                        error=str(e)
                    )
                    if entry.cancelled.wait(delay):
                        logger.info("import_job_retry_abandoned", job_id=job_id)
                        return None
        finally:
            with self._lock:
                if self._jobs.get(job_id) is entry:
                    del self._jobs[job_id]

    def cancel(self, job_id: str) -> bool:
        with self._lock:
            entry = self._jobs.get(job_id)
        if entry is None:
            return False

        entry.cancelled.set()
        if entry.future is not None and entry.future.cancel():
            with self._lock:
                if self._jobs.get(job_id) is entry:
                    del self._jobs[job_id]
        logger.info("import_job_cancel_requested", job_id=job_id)
        return True

    def is_tracked(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            entries = list(self._jobs.values())
        for entry in entries:
            entry.cancelled.set()
        self._executor.shutdown(wait=wait, cancel_futures=True)


# Singleton instance
_job_runner: Optional[JobRunner] = None


def get_job_runner() -> JobRunner:
    """Get or create the job runner, wired to the import processor."""
    global _job_runner
    if _job_runner is None:
        from services.product_import_processor import get_product_import_processor

        _job_runner = ThreadPoolJobRunner(
            handler=lambda payload: get_product_import_processor().process_import(payload)
        )
    return _job_runner


def shutdown_job_runner(wait: bool = False) -> None:
    """Stop the runner if one was started."""
    global _job_runner
    if isinstance(_job_runner, ThreadPoolJobRunner):
        _job_runner.shutdown(wait=wait)
    _job_runner = None
