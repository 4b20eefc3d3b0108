"""Thread coordination utilities for the store and its stream pumps."""

from threading import Event, RLock, Thread, current_thread
from typing import Dict, List, Optional

from blesession.constants import EVENT_THREAD_JOIN_TIMEOUT

__all__ = ["ThreadCoordinator"]


class ThreadCoordinator:
    """
    Centralized thread and event management for a store.

    Tracks the reducer thread and one pump thread per session stream, plus named
    events used to signal lifecycle changes. Finished threads are pruned as new
    ones are created so long-running stores do not accumulate dead entries.
    """

    def __init__(self):
        """
        Create a ThreadCoordinator used to track and manage threads and events.

        Initializes:
            _lock (RLock): reentrant lock protecting internal state.
            _threads (List[Thread]): list of tracked Thread objects.
            _events (Dict[str, Event]): mapping of event names to threading.Event objects.
        """
        self._lock = RLock()
        self._threads: List[Thread] = []
        self._events: Dict[str, Event] = {}

    def create_thread(
        self, target, name: str, *, daemon: bool = True, args=(), kwargs=None
    ) -> Thread:
        """
        Create and register a Thread tracked by this coordinator without starting it.

        Parameters:
            target (callable): Callable to be executed by the thread.
            name (str): Name assigned to the thread.
            daemon (bool): Whether the thread should run as a daemon.
            args (tuple): Positional arguments to pass to `target`.
            kwargs (dict | None): Keyword arguments to pass to `target`.

        Returns:
            Thread: The created Thread instance (tracked, not started).
        """
        with self._lock:
            self._threads = [
                thread
                for thread in self._threads
                if thread.is_alive() or thread.ident is None
            ]
            thread = Thread(
                target=target, name=name, daemon=daemon, args=args, kwargs=kwargs
            )
            self._threads.append(thread)
            return thread

    def start_thread(self, thread: Thread):
        """Start the given thread if it is tracked by this coordinator."""
        with self._lock:
            if thread in self._threads:
                thread.start()

    def create_event(self, name: str) -> Event:
        """Create and register an Event under the given name."""
        with self._lock:
            event = Event()
            self._events[name] = event
            return event

    def get_event(self, name: str) -> Optional[Event]:
        with self._lock:
            return self._events.get(name)

    def set_event(self, name: str):
        """Set a tracked event by name; unknown names are ignored."""
        with self._lock:
            if name in self._events:
                self._events[name].set()

    def wait_for_event(self, name: str, timeout: Optional[float] = None) -> bool:
        """
        Wait for the named event to become set or for the timeout to elapse.

        Returns:
            bool: True if the event was set before the timeout, False otherwise (including untracked names).
        """
        event = self.get_event(name)
        if event:
            return event.wait(timeout=timeout)
        return False

    def thread_count(self) -> int:
        """Number of tracked threads that are still alive."""
        with self._lock:
            return sum(1 for thread in self._threads if thread.is_alive())

    def cleanup(self, timeout: float = EVENT_THREAD_JOIN_TIMEOUT):
        """
        Signal all tracked events, join live tracked threads (excluding the current thread), and clear the registries.

        Threads are joined outside the lock so that threads touching the
        coordinator during shutdown cannot deadlock.
        """
        with self._lock:
            for event in self._events.values():
                event.set()

            current = current_thread()
            threads_to_join = [
                thread
                for thread in self._threads
                if thread.is_alive() and thread is not current
            ]

            self._threads.clear()
            self._events.clear()

        for thread in threads_to_join:
            thread.join(timeout=timeout)
