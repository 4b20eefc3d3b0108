"""Keyed storage of live BLE sessions and their hardware-facing resources."""

from contextlib import contextmanager
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Dict, Hashable, Iterator, List, NamedTuple, Optional

from blesession.constants import logger
from blesession.errors import DuplicateSessionError
from blesession.events import Operation
from blesession.stream import EventStream, PendingOperation

__all__ = ["SessionKey", "SessionRecord", "SessionRegistry"]


class SessionKey(NamedTuple):
    """Registry key; session ids only need to be unique within one kind."""

    kind: str
    session_id: Hashable


@dataclass
class SessionRecord:
    """
    Mutable resources owned by one live session.

    Only read or written while holding the registry lock (see
    `SessionRegistry.locked`).
    """

    key: SessionKey
    callback_handle: Any
    hardware_handle: Any
    stream: EventStream
    active: bool = True
    pending: Dict[Operation, PendingOperation] = field(default_factory=dict)
    # Per-role bookkeeping (scan flag, known devices, ...)
    context: Dict[str, Any] = field(default_factory=dict)

    def take_pending(self, operation: Operation) -> Optional[PendingOperation]:
        return self.pending.pop(operation, None)


class SessionRegistry:
    """
    Thread-safe registry mapping session keys to live session records.

    Hardware callbacks and command execution run on different threads, so every
    lookup, insert, removal and record mutation goes through one reentrant lock.
    """

    def __init__(self):
        self._lock = RLock()
        self._records: Dict[SessionKey, SessionRecord] = {}

    @property
    def lock(self) -> RLock:
        """Expose the reentrant lock guarding the registry."""
        return self._lock

    def create(
        self,
        key: SessionKey,
        callback_handle: Any,
        hardware_handle: Any,
        stream: EventStream,
    ) -> SessionRecord:
        """
        Register a new live session.

        Raises:
            DuplicateSessionError: If `key` is already registered.
        """
        with self._lock:
            if key in self._records:
                raise DuplicateSessionError(key)
            record = SessionRecord(key, callback_handle, hardware_handle, stream)
            self._records[key] = record
            logger.debug("Session created: %s/%r", key.kind, key.session_id)
            return record

    def lookup(self, key: SessionKey) -> Optional[SessionRecord]:
        """Return the live record for `key`, or None."""
        with self._lock:
            return self._records.get(key)

    @contextmanager
    def locked(self, key: SessionKey) -> Iterator[Optional[SessionRecord]]:
        """Hold the registry lock and yield the record for `key` (None if absent)."""
        with self._lock:
            yield self._records.get(key)

    def destroy(self, key: SessionKey) -> Optional[SessionRecord]:
        """
        Remove a session, cancel its pending operations and finish its stream.

        Idempotent: returns None when `key` is not registered.
        """
        with self._lock:
            record = self._records.pop(key, None)
            if record is None:
                return None
            record.active = False
            pending = list(record.pending.values())
            record.pending.clear()
            record.callback_handle = None
        for operation in pending:
            operation.cancel()
        record.stream.finish()
        logger.debug("Session destroyed: %s/%r", key.kind, key.session_id)
        return record

    def keys(self, kind: Optional[str] = None) -> List[SessionKey]:
        with self._lock:
            return [key for key in self._records if kind is None or key.kind == kind]

    def __contains__(self, key: SessionKey) -> bool:
        with self._lock:
            return key in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
