"""
Telemetry Uplink.

Queues completed Observations and delivers them to the remote collector
from a background delivery thread, retrying failures with exponential
backoff up to an attempt cap.

Scheduling:
- submit() posts the task to a thread-safe inbox and returns immediately
- the delivery thread keeps one FIFO per device; only the head of each
  FIFO may be attempted, so a device's observations are delivered in
  timestamp order
- among eligible heads, the earliest next_eligible_at goes first

Shutdown: stop() lets queued and in-flight deliveries run until the grace
period expires, then reports every unfinished task instead of dropping it
silently.
"""

import itertools
import logging
import queue
import threading
import time
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional

from beacon_core.proto import (
    DeliveryState,
    DeliveryTask,
    Observation,
    StatusEvent,
    StatusKind,
)
from beacon_core.metrics import MetricsCollector
from .backoff import BackoffPolicy
from .transport import DeliveryResult, Transport

logger = logging.getLogger(__name__)


_WAKE = object()


@dataclass
class UplinkConfig:
    """
    Configuration for the telemetry uplink.

    Attributes:
        max_attempts: Total delivery attempts per task before abandoning
        backoff: Retry backoff policy
        shutdown_grace_s: Time stop() allows for queued deliveries
        in_flight_timeout_s: Extra time stop() waits for an attempt started
            before the grace period expired (typically the transport timeout)
        max_queue_size: None = unbounded; otherwise drop the oldest pending
            task when more than this many are queued
        idle_poll_s: Delivery thread wake-up interval when idle
        history_size: Number of finished task outcomes kept for inspection
    """

    max_attempts: int = 5
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    shutdown_grace_s: float = 5.0
    in_flight_timeout_s: float = 5.0
    max_queue_size: Optional[int] = None
    idle_poll_s: float = 0.5
    history_size: int = 1000

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1: {self.max_attempts}")
        if self.max_queue_size is not None and self.max_queue_size < 1:
            raise ValueError(f"max_queue_size must be >= 1: {self.max_queue_size}")
        if self.shutdown_grace_s < 0:
            raise ValueError(f"shutdown_grace_s cannot be negative: {self.shutdown_grace_s}")


@dataclass(frozen=True)
class TaskOutcome:
    """Final state of one delivery task."""

    task_id: int
    observation: Observation
    state: DeliveryState
    attempts: int
    reason: Optional[str] = None


class _DeliveryRun:
    """
    Delivery state of one start()/stop() cycle.

    A delivery thread only ever touches its own run, so a thread still stuck
    in a transport call after stop() cannot act on tasks of a later run.
    """

    def __init__(self):
        self.inbox: "queue.Queue" = queue.Queue()
        self.queues: "OrderedDict[str, Deque[DeliveryTask]]" = OrderedDict()
        self.stored = 0
        self.thread: Optional[threading.Thread] = None
        self.stop_requested = threading.Event()
        self.stop_deadline: Optional[float] = None
        self.unfinished_reported = False
        self.unfinished: List[DeliveryTask] = []


class TelemetryUplink:
    """
    Reliable observation delivery.

    Threads:
    - Caller threads: submit(), start(), stop()
    - Delivery thread: owns the DeliveryTasks of its run, calls the transport

    Usage:
        uplink = TelemetryUplink(HttpTransport("http://collector:8000"))
        uplink.start()
        uplink.submit(observation)
        unfinished = uplink.stop()
    """

    def __init__(
        self,
        transport: Transport,
        config: Optional[UplinkConfig] = None,
        metrics: Optional[MetricsCollector] = None,
        on_status: Optional[Callable[[StatusEvent], None]] = None,
        on_task_finished: Optional[Callable[[TaskOutcome], None]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize telemetry uplink.

        Args:
            transport: Collector transport
            config: Uplink configuration (uses defaults if None)
            metrics: Metrics collector (new private one if None)
            on_status: Receives status events
            on_task_finished: Receives the outcome of every finished task
            clock: Monotonic clock (seconds)
        """
        self.transport = transport
        self.config = config or UplinkConfig()
        self.metrics = metrics or MetricsCollector()

        self._on_status = on_status
        self._on_task_finished = on_task_finished
        self._clock = clock

        self._store_lock = threading.Lock()
        self._lifecycle_lock = threading.Lock()
        self._current = _DeliveryRun()
        self._task_ids = itertools.count(1)
        self._outcomes: Deque[TaskOutcome] = deque(maxlen=self.config.history_size)

    @property
    def is_running(self) -> bool:
        thread = self._current.thread
        return thread is not None and thread.is_alive()

    def submit(self, observation: Observation):
        """
        Queue an Observation for delivery. Never waits on delivery.

        Submitting the same Observation twice creates two independent tasks.
        """
        with self._store_lock:
            task = DeliveryTask(
                observation=observation,
                created_at=self._clock(),
                task_id=next(self._task_ids),
            )
            self._current.inbox.put(task)
        self.metrics.increment('tasks_submitted')

    def pending_count(self) -> int:
        """Tasks submitted but not yet Delivered or Abandoned."""
        with self._store_lock:
            run = self._current
            return run.stored + run.inbox.qsize()

    def outcomes(self) -> List[TaskOutcome]:
        """Outcomes of recently finished tasks, oldest first."""
        with self._store_lock:
            return list(self._outcomes)

    @property
    def stats(self) -> Dict[str, int]:
        """Task totals: submitted, delivered, abandoned, dropped, pending."""
        return {
            'submitted': self.metrics.get_counter('tasks_submitted'),
            'delivered': self.metrics.get_counter('deliveries_succeeded'),
            'abandoned': self.metrics.get_counter('deliveries_abandoned'),
            'dropped': self.metrics.get_drop_count('queue_full'),
            'pending': self.pending_count(),
        }

    def start(self) -> bool:
        """
        Start the delivery thread. No effect if already running.

        Tasks submitted before start() are delivered by the new thread.

        Returns:
            True if a new delivery thread was started
        """
        with self._lifecycle_lock:
            run = self._current
            if run.thread is not None:
                return False

            run.thread = threading.Thread(
                target=self._run, args=(run,), name="telemetry-uplink", daemon=True
            )
            run.thread.start()

        logger.info(f"Telemetry uplink started (max_attempts={self.config.max_attempts})")
        return True

    def stop(self, grace_s: Optional[float] = None) -> List[DeliveryTask]:
        """
        Stop delivering after a bounded grace period.

        Queued tasks keep being delivered until they are all finished or the
        grace period expires. Tasks still unfinished are reported (status
        event per task) and returned. A delivery thread stuck in the
        transport is abandoned along with its run; a later start() gets a
        fresh run.

        Args:
            grace_s: Grace period (config.shutdown_grace_s if None)

        Returns:
            Unfinished tasks
        """
        grace_s = self.config.shutdown_grace_s if grace_s is None else grace_s

        with self._lifecycle_lock:
            run = self._current
            thread = run.thread
            if thread is None:
                return []

            run.stop_deadline = self._clock() + grace_s
            run.stop_requested.set()
            run.inbox.put(_WAKE)

            thread.join(timeout=grace_s + self.config.in_flight_timeout_s)
            if thread.is_alive():
                logger.error("Delivery thread still busy after grace period; "
                             "reporting queued tasks as unfinished")
                self._report_unfinished(run)

            with self._store_lock:
                unfinished = list(run.unfinished)

        logger.info(f"Telemetry uplink stopped ({len(unfinished)} unfinished)")
        return unfinished

    # ------------------------------------------------------------------
    # Delivery thread
    # ------------------------------------------------------------------

    def _run(self, run: _DeliveryRun):
        try:
            while True:
                self._drain_inbox(run)
                now = self._clock()

                if run.stop_requested.is_set():
                    if run.stored == 0 or now >= run.stop_deadline:
                        break

                task = self._pick_eligible(run, now)
                if task is not None:
                    self._attempt(run, task)
                    continue

                wait = self._time_to_next_eligible(run, now)
                if wait is None:
                    wait = self.config.idle_poll_s
                if run.stop_requested.is_set():
                    wait = min(wait, max(run.stop_deadline - now, 0.0))

                try:
                    item = run.inbox.get(timeout=wait)
                except queue.Empty:
                    continue
                if item is not _WAKE:
                    self._accept(run, item)
        finally:
            self._report_unfinished(run)

    def _drain_inbox(self, run: _DeliveryRun):
        while True:
            try:
                item = run.inbox.get_nowait()
            except queue.Empty:
                return
            if item is not _WAKE:
                self._accept(run, item)

    def _accept(self, run: _DeliveryRun, task: DeliveryTask):
        with self._store_lock:
            run.queues.setdefault(task.device_id, deque()).append(task)
            run.stored += 1

        max_size = self.config.max_queue_size
        if max_size is not None and run.stored > max_size:
            self._drop_oldest(run)

    def _drop_oldest(self, run: _DeliveryRun):
        with self._store_lock:
            oldest = min(
                (q[0] for q in run.queues.values() if q),
                key=lambda t: (t.created_at, t.task_id),
            )
            self._remove_head(run, oldest)

        oldest.mark_abandoned("queue full")
        self.metrics.increment_drop('queue_full')
        logger.warning(f"Delivery queue full, dropped {oldest.describe()}")
        self._emit(StatusKind.DELIVERY_DROPPED,
                   f"Queue full, dropped {oldest.observation.format_display()}")
        self._record(oldest)

    def _remove_head(self, run: _DeliveryRun, task: DeliveryTask) -> bool:
        """Remove task from the head of its device FIFO. Caller holds _store_lock."""
        fifo = run.queues.get(task.device_id)
        if not fifo or fifo[0] is not task:
            return False
        fifo.popleft()
        if not fifo:
            del run.queues[task.device_id]
        run.stored -= 1
        return True

    def _pick_eligible(self, run: _DeliveryRun, now: float) -> Optional[DeliveryTask]:
        with self._store_lock:
            heads = [q[0] for q in run.queues.values() if q and q[0].is_eligible(now)]
        if not heads:
            return None
        return min(heads, key=lambda t: (t.next_eligible_at, t.observation.timestamp_ms, t.task_id))

    def _time_to_next_eligible(self, run: _DeliveryRun, now: float) -> Optional[float]:
        with self._store_lock:
            deadlines = [q[0].next_eligible_at for q in run.queues.values() if q]
        if not deadlines:
            return None
        return max(min(deadlines) - now, 0.0)

    def _attempt(self, run: _DeliveryRun, task: DeliveryTask):
        task.mark_in_flight()
        self.metrics.increment('delivery_attempts')
        started = self._clock()
        if task.attempt == 1:
            self.metrics.record_histogram('queue_wait_ms', (started - task.created_at) * 1000.0)

        try:
            result = self.transport.deliver(task.observation.to_request())
        except Exception as e:
            logger.warning(f"Transport raised for {task.describe()}: {e!r}", exc_info=True)
            result = DeliveryResult.failed(f"transport error: {e!r}")

        finished = self._clock()
        self.metrics.record_histogram('delivery_latency_ms', (finished - started) * 1000.0)

        with self._store_lock:
            if run.unfinished_reported:
                logger.info(f"Late result for {task.describe()} after shutdown: "
                            f"{'delivered' if result.success else result.reason}")
                return

        if result.success:
            self._finish_delivered(run, task)
        elif not result.retryable or task.attempt >= self.config.max_attempts:
            self._finish_abandoned(run, task, result)
        else:
            backoff_s = self.config.backoff.next_delay(task.attempt, task.last_backoff_s)
            task.schedule_retry(finished, backoff_s, result.reason)
            self.metrics.increment('delivery_retries')
            logger.warning(
                f"Delivery failed for {task.describe()}: {result.reason}; "
                f"retrying in {backoff_s:.2f}s"
            )

    def _finish_delivered(self, run: _DeliveryRun, task: DeliveryTask):
        task.mark_delivered()
        with self._store_lock:
            self._remove_head(run, task)
        self.metrics.increment('deliveries_succeeded')
        logger.debug(f"Delivered {task.describe()}")
        self._emit(StatusKind.DELIVERY_SUCCEEDED,
                   f"Delivered {task.observation.format_display()}")
        self._record(task)

    def _finish_abandoned(self, run: _DeliveryRun, task: DeliveryTask, result: DeliveryResult):
        reason = result.reason or "rejected"
        if result.retryable:
            reason = f"{reason} (gave up after {task.attempt} attempts)"
        task.mark_abandoned(reason)
        with self._store_lock:
            self._remove_head(run, task)
        self.metrics.increment('deliveries_abandoned')
        self.metrics.increment_drop('delivery_abandoned')
        logger.error(f"Delivery abandoned for {task.describe()}: {reason}")
        self._emit(StatusKind.DELIVERY_ABANDONED,
                   f"Delivery abandoned: {task.observation.format_display()} ({reason})")
        self._record(task)

    def _report_unfinished(self, run: _DeliveryRun):
        """
        Account for every task still held by run; runs once per run.

        The uplink moves on to a fresh run in the same step, so nothing
        submitted afterwards can land in the finished run.
        """
        with self._store_lock:
            if run.unfinished_reported:
                return
            run.unfinished_reported = True

            leftovers = []
            while True:
                try:
                    item = run.inbox.get_nowait()
                except queue.Empty:
                    break
                if item is not _WAKE:
                    leftovers.append(item)

            unfinished = [t for q in run.queues.values() for t in q] + leftovers
            run.queues.clear()
            run.stored = 0
            run.unfinished = unfinished
            if self._current is run:
                self._current = _DeliveryRun()

        for task in unfinished:
            if task.state == DeliveryState.PENDING:
                task.mark_abandoned("shutdown grace period expired")
            self.metrics.increment_drop('shutdown_unfinished')
            logger.warning(f"Unfinished at shutdown: {task.describe()}")
            self._emit(StatusKind.DELIVERY_UNFINISHED,
                       f"Not delivered before shutdown: {task.observation.format_display()}")
            self._record(task)

    def _record(self, task: DeliveryTask):
        outcome = TaskOutcome(
            task_id=task.task_id,
            observation=task.observation,
            state=task.state,
            attempts=task.attempt,
            reason=task.last_error,
        )
        with self._store_lock:
            self._outcomes.append(outcome)
        if self._on_task_finished is not None:
            try:
                self._on_task_finished(outcome)
            except Exception:
                logger.exception("Task outcome listener failed")

    def _emit(self, kind: StatusKind, message: str):
        if self._on_status is None:
            return
        try:
            self._on_status(StatusEvent(kind=kind, message=message))
        except Exception:
            logger.exception("Status listener failed")
