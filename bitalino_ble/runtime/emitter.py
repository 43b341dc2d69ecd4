# bitalino_ble/runtime/emitter.py
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, List, Optional

from bitalino_ble.runtime.events import InboundEvent

EventCallback = Callable[[InboundEvent], None]


class DispatchWorker(threading.Thread):
    """Thread that drains the emitter queue and delivers events to subscribers."""

    def __init__(self, emitter: "EventEmitter"):
        super().__init__(daemon=True, name="bitalino-events")
        self.emitter = emitter
        self._stop_event = threading.Event()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.emitter._dispatch_one(timeout=0.05)
            except Exception:
                self.emitter._log.exception("DISPATCH_WORKER_EXCEPTION")
                self._stop_event.wait(0.01)

    def stop(self) -> None:
        self._stop_event.set()


class EventEmitter:
    """
    Ordered, fire-and-forget delivery of session events.

    publish() never blocks: events go into an unbounded queue and a single
    worker thread hands them to subscribers in publish order. A subscriber
    that raises is logged and skipped.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None):
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._callbacks: List[EventCallback] = []
        self._queue: "queue.Queue[InboundEvent]" = queue.Queue()

        self._idle = threading.Condition()
        self._in_flight = 0

        self._worker: Optional[DispatchWorker] = None

    def subscribe(self, cb: EventCallback) -> Callable[[], None]:
        with self._lock:
            self._callbacks.append(cb)

        def _unsubscribe() -> None:
            with self._lock:
                if cb in self._callbacks:
                    self._callbacks.remove(cb)

        return _unsubscribe

    def publish(self, event: InboundEvent) -> None:
        self._ensure_worker()
        with self._idle:
            self._in_flight += 1
        self._queue.put_nowait(event)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until every published event has been delivered."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._idle:
            while self._in_flight:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._idle.wait(remaining)
        return True

    def stop(self, timeout: float = 1.0) -> None:
        """Deliver what is queued, then stop the worker thread."""
        with self._lock:
            worker, self._worker = self._worker, None
        if worker is None:
            return

        if worker is threading.current_thread():
            # called from a subscriber; the worker exits after the current event
            worker.stop()
            return

        if not self.wait_idle(timeout):
            self._log.warning("EMITTER_STOP_PENDING in_flight=%d", self._in_flight)
        worker.stop()
        worker.join(timeout)

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None or not self._worker.is_alive():
                self._worker = DispatchWorker(self)
                self._worker.start()

    def _dispatch_one(self, timeout: float) -> None:
        try:
            event = self._queue.get(timeout=timeout)
        except queue.Empty:
            return

        try:
            with self._lock:
                cbs = list(self._callbacks)

            for cb in cbs:
                try:
                    cb(event)
                except Exception:
                    self._log.exception("EVENT_CALLBACK_ERROR kind=%s", event.kind.value)
        finally:
            with self._idle:
                self._in_flight -= 1
                self._idle.notify_all()


class EventQueue:
    """
    Channel-style subscriber: collects events so a consumer can drain them
    from its own thread.
    """

    def __init__(self) -> None:
        self._queue: "queue.Queue[InboundEvent]" = queue.Queue()

    def __call__(self, event: InboundEvent) -> None:
        self._queue.put_nowait(event)

    def get(self, timeout: Optional[float] = None) -> Optional[InboundEvent]:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def drain(self) -> List[InboundEvent]:
        events: List[InboundEvent] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events
