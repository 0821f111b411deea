"""
Delivery Queue
==============

Buffers outbound alerts and drains them on its own timer, independent of
the scan loop.

- Every tick sends up to batch_size eligible alerts concurrently.
- While the global throttle window is open the tick does nothing.
- A ThrottleError opens the window (retry_after from the sink, or the
  default) and puts the alert back in front with attempt_count + 1, up
  to max_retries; after that it is dropped.
- Any other failure drops the alert immediately.

Entries live in a heap keyed by (not_before, sequence). A requeued alert
keeps its original key, so it goes out before anything queued after it
without reshuffling the rest of the queue.

Every dropped alert produces exactly one ERROR log line and one
on_permanent_failure callback.
"""

import asyncio
import heapq
import itertools
import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from ..errors import PermanentError, ThrottleError
from ..models import Alert, AlertState
from .telegram import NotificationSink

logger = logging.getLogger(__name__)

FailureCallback = Callable[[Alert, str], None]


@dataclass
class QueueStats:
    enqueued: int = 0
    delivered: int = 0
    retried: int = 0
    dropped: int = 0
    throttle_events: int = 0


class DeliveryQueue:

    def __init__(
        self,
        sink: NotificationSink,
        interval: float = 0.2,
        batch_size: int = 5,
        max_retries: int = 3,
        default_retry_after: float = 2.0,
        capacity: Optional[int] = None,
        on_permanent_failure: Optional[FailureCallback] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            sink: Where alerts are delivered
            interval: Seconds between dispatcher ticks
            batch_size: Max alerts sent per tick
            max_retries: Throttle retries before an alert is dropped
            default_retry_after: Backoff when the sink gives no hint
            capacity: Max buffered alerts (None = unbounded)
            on_permanent_failure: Called once per dropped alert
            clock: Monotonic time source (injectable for tests)
        """
        self.sink = sink
        self.interval = interval
        self.batch_size = batch_size
        self.max_retries = max_retries
        self.default_retry_after = default_retry_after
        self.capacity = capacity
        self.on_permanent_failure = on_permanent_failure
        self.clock = clock

        self.throttled_until: float = 0.0
        self.stats = QueueStats()

        self._heap: List[Tuple[float, int, Alert]] = []
        self._seq = itertools.count()
        self._dispatching = False
        self._running = False
        self._task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def enqueue(
        self,
        destination: str,
        body: str,
        thread_id: Optional[str] = None,
        kind: str = "activity",
        delay: float = 0.0,
    ) -> bool:
        """
        Queue an alert for eventual delivery. Never blocks.

        Returns:
            False if the queue is full (the alert is dropped and reported)
        """
        alert = Alert(destination=destination, body=body, thread_id=thread_id, kind=kind)

        if self.capacity is not None and len(self._heap) >= self.capacity:
            self._drop(alert, f"queue full ({self.capacity} pending)")
            return False

        not_before = self.clock() + max(0.0, delay)
        heapq.heappush(self._heap, (not_before, next(self._seq), alert))
        self.stats.enqueued += 1
        return True

    async def send_now(self, destination: str, body: str, thread_id: Optional[str] = None) -> bool:
        """
        Send directly, bypassing the buffer and the throttle window.

        Used for shutdown summaries and other synchronous paths.

        Returns:
            True if delivered
        """
        try:
            await self.sink.send(destination, body, thread_id)
            return True
        except ThrottleError as e:
            logger.error(f"Immediate send throttled (retry after {e.retry_after}s), not retried")
        except PermanentError as e:
            logger.error(f"Immediate send failed: {e}")
        return False

    # -------------------------------------------------------------------------
    # Dispatcher
    # -------------------------------------------------------------------------

    @property
    def pending(self) -> int:
        return len(self._heap)

    def is_throttled(self) -> bool:
        return self.clock() < self.throttled_until

    def _pop_batch(self) -> List[Tuple[float, int, Alert]]:
        now = self.clock()
        batch = []
        while self._heap and len(batch) < self.batch_size and self._heap[0][0] <= now:
            batch.append(heapq.heappop(self._heap))
        return batch

    async def _deliver(self, entry: Tuple[float, int, Alert]):
        not_before, seq, alert = entry
        alert.state = AlertState.SENDING
        try:
            await self.sink.send(alert.destination, alert.body, alert.thread_id)
        except ThrottleError as e:
            self._handle_throttle(entry, e)
            return
        except PermanentError as e:
            self._drop(alert, str(e))
            return
        except Exception as e:
            self._drop(alert, f"unexpected sink error: {type(e).__name__}: {e}")
            return

        alert.state = AlertState.DELIVERED
        self.stats.delivered += 1

    def _handle_throttle(self, entry: Tuple[float, int, Alert], error: ThrottleError):
        not_before, seq, alert = entry
        retry_after = error.retry_after if error.retry_after is not None else self.default_retry_after
        self.throttled_until = max(self.throttled_until, self.clock() + retry_after)
        self.stats.throttle_events += 1

        if alert.attempt_count < self.max_retries:
            alert.attempt_count += 1
            alert.state = AlertState.REQUEUED
            heapq.heappush(self._heap, (not_before, seq, alert))
            self.stats.retried += 1
            logger.warning(
                f"Alert throttled, retry {alert.attempt_count}/{self.max_retries} "
                f"in {retry_after:.1f}s"
            )
        else:
            self._drop(alert, f"throttled after {alert.attempt_count} retries")

    def _drop(self, alert: Alert, reason: str):
        alert.state = AlertState.DROPPED
        self.stats.dropped += 1
        logger.error(f"Dropping {alert.kind} alert for {alert.destination}: {reason}")
        if self.on_permanent_failure is not None:
            self.on_permanent_failure(alert, reason)

    async def tick(self) -> int:
        """
        Run one dispatcher step.

        Returns:
            Number of alerts attempted (0 while throttled or busy)
        """
        if self._dispatching or self.is_throttled():
            return 0

        batch = self._pop_batch()
        if not batch:
            return 0

        self._dispatching = True
        try:
            await asyncio.gather(*(self._deliver(entry) for entry in batch))
        finally:
            self._dispatching = False
        return len(batch)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _run(self):
        while self._running:
            await self.tick()
            await asyncio.sleep(self.interval)

    def start(self):
        """Start the ticking dispatcher on the running event loop."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._run())
            logger.debug("Delivery queue started")

    async def stop(self, drain_timeout: float = 5.0):
        """
        Stop the dispatcher after a best-effort drain.

        Alerts still pending after drain_timeout are dropped and reported.
        """
        self._running = False
        if self._task is not None:
            # The loop exits after its current tick and sleep
            await self._task
            self._task = None

        deadline = time.monotonic() + drain_timeout
        while self._heap and time.monotonic() < deadline:
            if await self.tick() == 0:
                await asyncio.sleep(self.interval)

        while self._heap:
            _, _, alert = heapq.heappop(self._heap)
            self._drop(alert, "undelivered at shutdown")

    def get_stats(self) -> dict:
        return {
            "enqueued": self.stats.enqueued,
            "delivered": self.stats.delivered,
            "retried": self.stats.retried,
            "dropped": self.stats.dropped,
            "pending": self.pending,
            "throttled": self.is_throttled(),
        }
