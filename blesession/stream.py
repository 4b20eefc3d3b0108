"""Event streams and pending-operation handles returned by sessions."""

from concurrent.futures import Future, InvalidStateError
from queue import Empty, Queue
from threading import Lock
from typing import Any, Callable, Iterator, Optional

from blesession.constants import logger
from blesession.events import Operation

__all__ = ["EventStream", "PendingOperation", "StreamEmpty"]

StreamEmpty = Empty

_END_OF_STREAM = object()


class EventStream:
    """
    Ordered, thread-safe channel of events raised by one session.

    Hardware callbacks call `send` from any thread; a single consumer reads with
    `get` or by iterating. `finish` terminates the stream: events already sent
    are still delivered, later sends are dropped.
    """

    def __init__(self, name: str = "stream"):
        self.name = name
        self._queue: "Queue[Any]" = Queue()
        self._lock = Lock()
        self._finished = False
        self._drained = False

    @property
    def finished(self) -> bool:
        """True once `finish` has been called."""
        with self._lock:
            return self._finished

    def send(self, event) -> bool:
        """
        Append an event to the stream.

        Returns:
            bool: False if the stream was already finished and the event was dropped.
        """
        with self._lock:
            if self._finished:
                logger.debug("Dropping %r on finished stream %s", event, self.name)
                return False
            self._queue.put(event)
            return True

    def finish(self) -> None:
        """Signal end-of-stream to the consumer. Idempotent."""
        with self._lock:
            if self._finished:
                return
            self._finished = True
            self._queue.put(_END_OF_STREAM)

    def get(self, timeout: Optional[float] = None):
        """
        Return the next event, or None once the stream has ended.

        Raises:
            StreamEmpty: If no event arrives within `timeout` seconds.
        """
        if self._drained:
            return None
        item = self._queue.get(timeout=timeout)
        if item is _END_OF_STREAM:
            self._drained = True
            return None
        return item

    def __iter__(self) -> Iterator[Any]:
        while True:
            event = self.get()
            if event is None:
                return
            yield event


class PendingOperation:
    """
    Handle to a fire-and-forget session operation.

    Resolved exactly once with the event that completed (or rejected) the
    operation. Destroying the owning session cancels it.
    """

    def __init__(self, operation: Operation):
        self.operation = operation
        self._future: "Future[Any]" = Future()

    @classmethod
    def resolved(cls, operation: Operation, event) -> "PendingOperation":
        pending = cls(operation)
        pending.resolve(event)
        return pending

    def resolve(self, event) -> bool:
        """Complete the operation with `event`; returns False if it was already done."""
        try:
            self._future.set_result(event)
        except InvalidStateError:
            return False
        return True

    def cancel(self) -> bool:
        return self._future.cancel()

    def done(self) -> bool:
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: Optional[float] = None):
        """
        Wait for and return the completion event.

        Raises:
            concurrent.futures.CancelledError: If the session was destroyed first.
            concurrent.futures.TimeoutError: If nothing resolved it within `timeout`.
        """
        return self._future.result(timeout)

    def add_done_callback(self, fn: Callable[["PendingOperation"], Any]) -> None:
        self._future.add_done_callback(lambda _f: fn(self))

    def __repr__(self) -> str:
        if self._future.cancelled():
            status = "cancelled"
        elif self._future.done():
            status = "done"
        else:
            status = "pending"
        return f"<PendingOperation {self.operation.value} {status}>"

