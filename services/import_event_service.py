"""
Import event service.

In-process publish/subscribe for import job events. Subscriptions are
keyed by (job_id, company_id) and only receive events for that key.
Publishing never blocks: each subscriber owns an unbounded queue.

After a terminal event (completed, failed, cancelled) the job's
subscriptions stay open for a grace period so slow consumers can read
the final event, then they are closed and dropped. A subscription opened
after that is closed once another grace period passes, unless the job
runs again.
"""

import queue
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Iterator, Optional

import structlog

from config import settings
from models.import_event import ImportEvent, ImportEventType
from models.import_job import ConflictInfo, ImportJobError, ImportJobProgress

logger = structlog.get_logger(__name__)

SubscriptionKey = tuple[str, str]

# Queued when a subscription closes, so a blocked get() wakes up
_CLOSED = object()

# Finished jobs remembered so late subscriptions still get cleaned up
FINISHED_KEYS_LIMIT = 10_000


class EventSubscription:
    """
    One consumer's view of a job's event stream.

    get() blocks up to `timeout` seconds and returns None on timeout or
    once closed. Iterating yields events until a terminal event has been
    yielded or the subscription is closed.
    """

    def __init__(self, job_id: str, company_id: str, on_close=None):
        self.job_id = job_id
        self.company_id = company_id
        self._queue: queue.SimpleQueue = queue.SimpleQueue()
        self._closed = threading.Event()
        self._on_close = on_close

    @property
    def key(self) -> SubscriptionKey:
        return (self.job_id, self.company_id)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, event: ImportEvent) -> None:
        if not self.closed:
            self._queue.put(event)

    def get(self, timeout: Optional[float] = None) -> Optional[ImportEvent]:
        # Drain already-delivered events even after close
        try:
            item = self._queue.get(block=not self.closed, timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def close(self) -> None:
        if self.closed:
            return
        self._closed.set()
        self._queue.put(_CLOSED)
        if self._on_close is not None:
            self._on_close(self)

    def __iter__(self) -> Iterator[ImportEvent]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event
            if event.is_terminal:
                return


class EventSink(ABC):
    """Where the import pipeline sends its events."""

    @abstractmethod
    def publish(self, company_id: str, job_id: str, event: ImportEvent) -> None:
        pass

    @abstractmethod
    def subscribe(self, job_id: str, company_id: str) -> EventSubscription:
        pass


class ImportEventService(EventSink):
    """
    Subscription registry plus typed emit helpers.

    The registry is the only state shared between jobs. It is guarded
    by a lock and bounded by grace-period cleanup.
    """

    def __init__(self, grace_period_seconds: Optional[float] = None):
        if grace_period_seconds is None:
            grace_period_seconds = settings.event_grace_period_seconds
        self.grace_period_seconds = grace_period_seconds
        self._lock = threading.Lock()
        self._subscriptions: dict[SubscriptionKey, list[EventSubscription]] = {}
        self._cleanup_timers: dict[SubscriptionKey, threading.Timer] = {}
        self._finished: OrderedDict[SubscriptionKey, None] = OrderedDict()

    # ===================
    # SUBSCRIPTIONS
    # ===================

    def subscribe(self, job_id: str, company_id: str) -> EventSubscription:
        subscription = EventSubscription(job_id, company_id, on_close=self._remove)
        with self._lock:
            self._subscriptions.setdefault(subscription.key, []).append(subscription)
            finished = subscription.key in self._finished
        logger.debug("import_events_subscribed", job_id=job_id, company_id=company_id, finished=finished)

        # No terminal event will follow for a finished job
        if finished:
            self._schedule_cleanup(subscription.key)
        return subscription

    def _remove(self, subscription: EventSubscription) -> None:
        with self._lock:
            subscriptions = self._subscriptions.get(subscription.key)
            if not subscriptions:
                return
            if subscription in subscriptions:
                subscriptions.remove(subscription)
            if not subscriptions:
                del self._subscriptions[subscription.key]

    def subscriber_count(self, job_id: str, company_id: str) -> int:
        with self._lock:
            return len(self._subscriptions.get((job_id, company_id), []))

    def _schedule_cleanup(self, key: SubscriptionKey) -> None:
        with self._lock:
            if key in self._cleanup_timers:
                return
            timer = threading.Timer(self.grace_period_seconds, self._cleanup, args=(key,))
            timer.daemon = True
            self._cleanup_timers[key] = timer
        timer.start()

    def _cleanup(self, key: SubscriptionKey) -> None:
        with self._lock:
            self._cleanup_timers.pop(key, None)
            subscriptions = self._subscriptions.pop(key, [])

        for subscription in subscriptions:
            subscription.close()

        logger.debug(
            "import_events_cleaned_up",
            job_id=key[0],
            company_id=key[1],
            closed=len(subscriptions)
        )

    def shutdown(self) -> None:
        """Close every subscription and cancel pending cleanups."""
        with self._lock:
            timers = list(self._cleanup_timers.values())
            self._cleanup_timers.clear()
            self._finished.clear()
            keys = list(self._subscriptions)
        for timer in timers:
            timer.cancel()
        for key in keys:
            self._cleanup(key)

    # ===================
    # PUBLISHING
    # ===================

    def publish(self, company_id: str, job_id: str, event: ImportEvent) -> None:
        key = (job_id, company_id)
        if (event.job_id, event.company_id) != key:
            logger.warning(
                "import_event_key_mismatch",
                job_id=job_id,
                company_id=company_id,
                event_job_id=event.job_id
            )
            return

        pending_cleanup = None
        with self._lock:
            subscriptions = list(self._subscriptions.get(key, []))
            if event.is_terminal:
                self._finished[key] = None
                self._finished.move_to_end(key)
                while len(self._finished) > FINISHED_KEYS_LIMIT:
                    self._finished.popitem(last=False)
            elif key in self._finished:
                # A retried job is running again
                del self._finished[key]
                pending_cleanup = self._cleanup_timers.pop(key, None)

        if pending_cleanup is not None:
            pending_cleanup.cancel()

        for subscription in subscriptions:
            subscription.deliver(event)

        if event.is_terminal:
            self._schedule_cleanup(key)

    def _emit(self, job_id: str, company_id: str, event_type: ImportEventType, data: dict) -> ImportEvent:
        event = ImportEvent(type=event_type, job_id=job_id, company_id=company_id, data=data)
        self.publish(company_id, job_id, event)
        return event

    def emit_started(self, job_id: str, company_id: str, progress: ImportJobProgress) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.STARTED, progress.to_event_data())

    def emit_progress(self, job_id: str, company_id: str, progress: ImportJobProgress) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.PROGRESS, progress.to_event_data())

    def emit_phase_changed(self, job_id: str, company_id: str, progress: ImportJobProgress) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.PHASE_CHANGED, progress.to_event_data())

    def emit_product_imported(self, job_id: str, company_id: str, product_id: str, sku: str) -> ImportEvent:
        return self._emit(
            job_id, company_id, ImportEventType.PRODUCT_IMPORTED,
            {"product_id": product_id, "sku": sku}
        )

    def emit_product_skipped(
        self,
        job_id: str,
        company_id: str,
        external_id: str,
        sku: str,
        reason: Optional[str] = None
    ) -> ImportEvent:
        return self._emit(
            job_id, company_id, ImportEventType.PRODUCT_SKIPPED,
            {"external_id": external_id, "sku": sku, "reason": reason}
        )

    def emit_product_error(self, job_id: str, company_id: str, error: ImportJobError) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.PRODUCT_ERROR, error.to_log_entry())

    def emit_conflict_detected(self, job_id: str, company_id: str, conflict: ConflictInfo) -> ImportEvent:
        return self._emit(
            job_id, company_id, ImportEventType.CONFLICT_DETECTED,
            conflict.model_dump(mode="json")
        )

    def emit_completed(self, job_id: str, company_id: str, progress: ImportJobProgress) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.COMPLETED, progress.to_event_data())

    def emit_failed(self, job_id: str, company_id: str, error: ImportJobError) -> ImportEvent:
        return self._emit(job_id, company_id, ImportEventType.FAILED, error.to_log_entry())

    def emit_cancelled(self, job_id: str, company_id: str, progress: Optional[ImportJobProgress] = None) -> ImportEvent:
        data = progress.to_event_data() if progress is not None else {"id": job_id}
        return self._emit(job_id, company_id, ImportEventType.CANCELLED, data)


# Singleton instance
_import_event_service: Optional[ImportEventService] = None


def get_import_event_service() -> ImportEventService:
    """Get or create ImportEventService instance."""
    global _import_event_service
    if _import_event_service is None:
        _import_event_service = ImportEventService()
    return _import_event_service
