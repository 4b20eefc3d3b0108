"""Peripheral sessions: service discovery on one connected device."""

from typing import Any, Hashable, Iterable, Optional, Sequence, Tuple

from blesession.adapter import PeripheralAdapter, PeripheralDelegate
from blesession.constants import ERROR_DISCOVERY_IN_PROGRESS, ERROR_NOT_CONNECTED, logger
from blesession.errors import ErrorKind, SessionError
from blesession.events import (
    Operation,
    OperationRejected,
    ServicesDiscovered,
    ServicesDiscoveryFailed,
)
from blesession.registry import SessionRecord
from blesession.session import SessionDelegate, SessionFamily
from blesession.stream import EventStream, PendingOperation

__all__ = ["PeripheralSession"]


class _PeripheralDelegate(SessionDelegate, PeripheralDelegate):
    """Delivers exactly one result event per accepted discovery request."""

    def services_discovered(
        self, services: Optional[Sequence[Any]], error: Optional[Any] = None
    ) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None or Operation.DISCOVER_SERVICES not in record.pending:
                logger.debug("Dropping unsolicited service discovery result for %r", self.key)
                return
            device_id = record.context["device_id"]
            if error is not None:
                event = ServicesDiscoveryFailed(
                    self.session_id, device_id, SessionError.hardware(error)
                )
            else:
                discovered = tuple(services or ())
                record.context["services"] = discovered
                event = ServicesDiscovered(self.session_id, device_id, discovered)
            self._emit(event, resolves=(Operation.DISCOVER_SERVICES,))


class PeripheralSession(SessionFamily):
    """Sessions bound to exactly one connected device for their lifetime."""

    kind = "peripheral"

    def create(
        self,
        session_id: Hashable,
        device_id: Hashable,
        handle: Optional[PeripheralAdapter],
    ) -> EventStream:
        """
        Bind a session to the hardware handle of a connected device.

        A missing handle (device no longer connected) yields a finished stream
        carrying one `OperationRejected` with `NOT_CONNECTED`.
        """
        if handle is None:
            stream = EventStream(f"{self.kind}/{session_id!r}")
            stream.send(
                OperationRejected(
                    session_id,
                    Operation.CREATE,
                    SessionError(ErrorKind.NOT_CONNECTED, ERROR_NOT_CONNECTED),
                )
            )
            stream.finish()
            return stream

        def install(delegate: _PeripheralDelegate) -> PeripheralAdapter:
            handle.set_delegate(delegate)
            return handle

        return self._open(
            session_id,
            lambda key: _PeripheralDelegate(self, key),
            install,
            context={"device_id": device_id, "services": None},
        )

    def destroy(self, session_id: Hashable) -> bool:
        """Detach the delegate, cancel a pending discovery and end the stream."""
        return self._close(session_id, self._teardown)

    def _teardown(self, record: SessionRecord) -> None:
        handle = record.hardware_handle
        if handle is not None:
            handle.set_delegate(None)

    def discover_services(
        self, session_id: Hashable, service_filter: Optional[Iterable[str]] = None
    ) -> PendingOperation:
        """
        Request service discovery; at most one request may be outstanding.

        Resolves with `ServicesDiscovered`, `ServicesDiscoveryFailed`, or
        `OperationRejected` (`DISCOVERY_IN_PROGRESS`).
        """
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                return self._missing(session_id, Operation.DISCOVER_SERVICES)
            if Operation.DISCOVER_SERVICES in record.pending:
                return self._reject(
                    session_id,
                    Operation.DISCOVER_SERVICES,
                    SessionError(ErrorKind.DISCOVERY_IN_PROGRESS, ERROR_DISCOVERY_IN_PROGRESS),
                )
            pending = PendingOperation(Operation.DISCOVER_SERVICES)
            record.pending[Operation.DISCOVER_SERVICES] = pending
            handle = record.hardware_handle
            delegate = record.callback_handle
        filters = list(service_filter) if service_filter else None
        try:
            handle.discover_services(filters)
        except Exception as e:  # noqa: BLE001 - reported as ServicesDiscoveryFailed
            logger.warning("Adapter failed to discover services: %s", e)
            delegate.services_discovered(None, e)
        return pending

    def services(self, session_id: Hashable) -> Optional[Tuple[Any, ...]]:
        """Services from the last successful discovery, or None."""
        with self.registry.locked(self.key(session_id)) as record:
            if record is None:
                return None
            return record.context["services"]

    def device_id(self, session_id: Hashable) -> Optional[Hashable]:
        with self.registry.locked(self.key(session_id)) as record:
            if record is None:
                return None
            return record.context["device_id"]
