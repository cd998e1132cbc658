"""Ordered progress events for deploy and destroy operations."""

import queue
import threading
from typing import Callable, Iterator, List, Optional

from vpn_deploy.state.models import ProgressEvent
from vpn_deploy.utils.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


class ProgressOrderError(RuntimeError):
    """An event would break the per-operation ordering contract."""
    pass


class Subscription:
    """Pull-style view of the bus, backed by a queue."""

    def __init__(self, bus: "ProgressBus"):
        self._queue: "queue.Queue[ProgressEvent]" = queue.Queue()
        self._unsubscribe = bus.subscribe(self._queue.put)

    def get(self, timeout: Optional[float] = None) -> Optional[ProgressEvent]:
        """Next event, or None if none arrives within the timeout."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __iter__(self) -> Iterator[ProgressEvent]:
        """Yield events until an operation reaches its terminal event."""
        while True:
            event = self._queue.get()
            yield event
            if event.status == "error" or (event.status == "done" and event.step == event.total_steps):
                return

    def close(self) -> None:
        self._unsubscribe()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class OperationChannel:
    """Emits the events of one operation and enforces their order.

    Steps are 1-based and contiguous; a step's running event may be repeated
    with new messages, and step n+1 may start only after step n is done. The
    channel closes after the final step is done or after its single error.
    """

    def __init__(self, bus: "ProgressBus", operation: str, total_steps: int):
        if total_steps < 1:
            raise ProgressOrderError("total_steps must be at least 1")
        self.bus = bus
        self.operation = operation
        self.total_steps = total_steps
        self.current_step = 0
        self._step_done = True
        self.closed = False
        self.failed = False

    def _emit(self, step: int, message: str, status: str) -> None:
        if self.closed:
            raise ProgressOrderError(f"{self.operation} channel is closed")
        if not 1 <= step <= self.total_steps:
            raise ProgressOrderError(f"Step {step} outside 1..{self.total_steps}")

        if step != self.current_step:
            if step != self.current_step + 1 or not self._step_done:
                raise ProgressOrderError(
                    f"Step {step} cannot follow step {self.current_step} "
                    f"({'done' if self._step_done else 'in progress'})"
                )
            self.current_step = step
            self._step_done = False
        elif self._step_done and status != "error":
            raise ProgressOrderError(f"Step {step} is already done")

        if status == "done":
            self._step_done = True
            if step == self.total_steps:
                self.closed = True
        elif status == "error":
            self.failed = True
            self.closed = True

        self.bus.publish(ProgressEvent(
            operation=self.operation,
            step=step,
            total_steps=self.total_steps,
            message=message,
            status=status,
        ))

    def running(self, step: int, message: str) -> None:
        self._emit(step, message, "running")

    def done(self, step: int, message: str) -> None:
        self._emit(step, message, "done")

    def error(self, step: int, message: str) -> None:
        self._emit(step, message, "error")

    def fail(self, message: str) -> None:
        """Emit the operation's error on the current step, or step 1 before any step ran."""
        self.error(max(self.current_step, 1), message)


class ProgressBus:
    """Fans events out to subscribers synchronously, in emit order."""

    def __init__(self):
        self._subscribers: List[ProgressCallback] = []
        self._lock = threading.RLock()

    def subscribe(self, callback: ProgressCallback) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def stream(self) -> Subscription:
        """Pull-style subscription. Events published before this call are not replayed."""
        return Subscription(self)

    def open(self, operation: str, total_steps: int) -> OperationChannel:
        return OperationChannel(self, operation, total_steps)

    def publish(self, event: ProgressEvent) -> None:
        # Held across delivery so concurrent publishers cannot interleave
        with self._lock:
            subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(event)
                except Exception:
                    logger.exception(f"Progress subscriber failed on {event.operation} step {event.step}")
