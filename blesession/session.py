"""Session machinery shared by the central, peripheral and peripheral-manager roles."""

from typing import Any, Callable, Dict, Hashable, Iterable, Optional

from blesession.constants import ERROR_DUPLICATE_SESSION, ERROR_NO_SESSION, logger
from blesession.errors import (
    BLEErrorHandler,
    DuplicateSessionError,
    ErrorKind,
    SessionError,
)
from blesession.events import Operation, OperationRejected
from blesession.registry import SessionKey, SessionRecord, SessionRegistry
from blesession.state import RadioState
from blesession.stream import EventStream, PendingOperation

__all__ = ["SessionDelegate", "SessionFamily"]


class SessionFamily:
    """
    Base class for one kind of session.

    Owns nothing itself: every live session lives in the injected
    `SessionRegistry` under ``SessionKey(kind, session_id)``. Subclasses
    provide the delegate (callback sink) and the hardware handle.
    """

    kind = "session"
    # Event type announcing radio power changes, if the role tracks power
    radio_event: Optional[Callable[[Hashable, RadioState], Any]] = None

    def __init__(self, registry: SessionRegistry):
        self.registry = registry
        self.error_handler = BLEErrorHandler()

    def key(self, session_id: Hashable) -> SessionKey:
        return SessionKey(self.kind, session_id)

    def is_active(self, session_id: Hashable) -> bool:
        record = self.registry.lookup(self.key(session_id))
        return record is not None and record.active

    def _open(
        self,
        session_id: Hashable,
        make_delegate: Callable[[SessionKey], "SessionDelegate"],
        make_hardware: Callable[["SessionDelegate"], Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> EventStream:
        """
        Register a session and return its event stream.

        Never raises: a duplicate id or a failing hardware factory yields a
        stream carrying a single `OperationRejected` that is already finished.
        """
        key = self.key(session_id)
        stream = EventStream(f"{self.kind}/{session_id!r}")
        with self.registry.lock:
            try:
                record = self.registry.create(key, None, None, stream)
            except DuplicateSessionError:
                logger.warning("Refusing to create duplicate %s session %r", self.kind, session_id)
                stream.send(
                    OperationRejected(
                        session_id,
                        Operation.CREATE,
                        SessionError(
                            ErrorKind.DUPLICATE_SESSION,
                            ERROR_DUPLICATE_SESSION.format(session_id),
                        ),
                    )
                )
                stream.finish()
                return stream
            record.context.update(context or {})
            delegate = make_delegate(key)
            record.callback_handle = delegate
            try:
                record.hardware_handle = make_hardware(delegate)
            except Exception as e:  # noqa: BLE001 - surfaced as an event
                logger.warning("Failed to create %s session %r: %s", self.kind, session_id, e)
                stream.send(
                    OperationRejected(session_id, Operation.CREATE, SessionError.hardware(e))
                )
                self.registry.destroy(key)
                return stream
            self._sync_radio_state(record)
        return stream

    def _sync_radio_state(self, record: SessionRecord) -> None:
        """
        Seed the cached radio state from the adapter unless a callback already did.

        A known initial state is announced on the stream, so consumers always
        learn the power state of a fresh session.
        """
        if record.context.get("radio_state") is not RadioState.UNKNOWN:
            return
        state = self.error_handler.safe_execute(
            record.hardware_handle.power_state,
            default_return=RadioState.UNKNOWN,
            error_msg="Unable to read radio power state",
        )
        record.context["radio_state"] = state
        if state is not RadioState.UNKNOWN and self.radio_event is not None:
            record.stream.send(self.radio_event(record.key.session_id, state))

    def _close(
        self, session_id: Hashable, teardown: Callable[[SessionRecord], None]
    ) -> bool:
        """
        Stop accepting callbacks, release hardware, then finish the stream.

        Idempotent: returns False if the session is unknown or already closing.
        """
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                logger.debug("destroy: no live %s session %r", self.kind, session_id)
                return False
            record.active = False
        self.error_handler.safe_cleanup(
            lambda: teardown(record), f"{self.kind} session teardown"
        )
        self.registry.destroy(key)
        return True

    def _emit(
        self, key: SessionKey, event, resolves: Iterable[Operation] = ()
    ) -> bool:
        """Resolve the named pending operations with `event` and append it to the stream."""
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                logger.debug("Dropping %r for inactive session %r", event, key)
                return False
            for operation in resolves:
                pending = record.take_pending(operation)
                if pending is not None:
                    pending.resolve(event)
            return record.stream.send(event)

    def _reject(
        self, session_id: Hashable, operation: Operation, error: SessionError
    ) -> PendingOperation:
        """Report a refused operation on the stream and return it already resolved."""
        event = OperationRejected(session_id, operation, error)
        logger.debug("%s session %r rejected %s: %s", self.kind, session_id, operation.value, error)
        self._emit(self.key(session_id), event)
        return PendingOperation.resolved(operation, event)

    def _missing(self, session_id: Hashable, operation: Operation) -> PendingOperation:
        """Unknown session ids are no-ops; the returned handle is cancelled."""
        logger.debug(ERROR_NO_SESSION.format(self.key(session_id)))
        pending = PendingOperation(operation)
        pending.cancel()
        return pending


class SessionDelegate:
    """Callback sink bound to one session key; forwards into the family."""

    def __init__(self, family: SessionFamily, key: SessionKey):
        self.family = family
        self.key = key

    @property
    def session_id(self) -> Hashable:
        return self.key.session_id

    def _emit(self, event, resolves: Iterable[Operation] = ()) -> bool:
        return self.family._emit(self.key, event, resolves)
