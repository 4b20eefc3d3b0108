"""Peripheral-manager sessions: advertising this device to remote centrals."""

from typing import Any, Hashable, Optional, Sequence

from blesession.adapter import PeripheralManagerAdapterFactory, PeripheralManagerDelegate
from blesession.constants import ERROR_RADIO_NOT_READY, logger
from blesession.errors import ErrorKind, SessionError
from blesession.events import (
    AdvertisingStarted,
    Operation,
    PeripheralConnected,
    PeripheralDisconnected,
    PeripheralManagerStateChanged,
    ServicesDiscoveredByRemote,
)
from blesession.registry import SessionRecord, SessionRegistry
from blesession.session import SessionDelegate, SessionFamily
from blesession.state import RadioState
from blesession.stream import EventStream, PendingOperation

__all__ = ["PeripheralManagerSession"]


class _PeripheralManagerDelegate(SessionDelegate, PeripheralManagerDelegate):
    def power_state_changed(self, state: RadioState) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            record.context["radio_state"] = state
            if not state.is_ready:
                if record.context["advertising"]:
                    logger.debug("Radio left powered-on state; advertising stopped")
                    record.context["advertising"] = False
                record.context["stop_requested"] = False
                if Operation.START_ADVERTISING in record.pending:
                    error = SessionError(
                        ErrorKind.RADIO_NOT_READY,
                        ERROR_RADIO_NOT_READY.format(state.value),
                    )
                    self._emit(
                        AdvertisingStarted(self.session_id, error),
                        resolves=(Operation.START_ADVERTISING,),
                    )
            self._emit(PeripheralManagerStateChanged(self.session_id, state))

    def advertising_started(self, error: Optional[Any] = None) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            if Operation.START_ADVERTISING in record.pending:
                record.context["advertising"] = error is None
                reported = SessionError.hardware(error) if error is not None else None
                self._emit(
                    AdvertisingStarted(self.session_id, reported),
                    resolves=(Operation.START_ADVERTISING,),
                )
                return
            withdrawn = record.active and record.context["stop_requested"]
            record.context["stop_requested"] = False
            adapter = record.hardware_handle
        if not withdrawn or error is not None:
            logger.debug("Ignoring unsolicited advertising result for %r", self.key)
            return
        # The adapter finished starting after the request was withdrawn
        logger.debug("Advertising came up after stop was requested; stopping again")
        self.family.error_handler.safe_execute(
            adapter.stop_advertising, error_msg="Error stopping advertising"
        )

    def central_connected(self, central_id: Hashable) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            record.context["centrals"].add(central_id)
            self._emit(PeripheralConnected(self.session_id, central_id))

    def central_disconnected(self, central_id: Hashable) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None or central_id not in record.context["centrals"]:
                return
            record.context["centrals"].discard(central_id)
            self._emit(PeripheralDisconnected(self.session_id, central_id))

    def services_discovered_by_remote(
        self, central_id: Hashable, error: Optional[Any] = None
    ) -> None:
        reported = SessionError.hardware(error) if error is not None else None
        self._emit(ServicesDiscoveredByRemote(self.session_id, central_id, reported))


class PeripheralManagerSession(SessionFamily):
    """Advertiser-side sessions, sharing the registry with the central roles."""

    kind = "peripheral_manager"
    radio_event = PeripheralManagerStateChanged

    def __init__(
        self, registry: SessionRegistry, adapter_factory: PeripheralManagerAdapterFactory
    ):
        super().__init__(registry)
        self.adapter_factory = adapter_factory

    def create(self, session_id: Hashable) -> EventStream:
        return self._open(
            session_id,
            lambda key: _PeripheralManagerDelegate(self, key),
            self.adapter_factory,
            context={
                "radio_state": RadioState.UNKNOWN,
                "advertising": False,
                "stop_requested": False,
                "centrals": set(),
            },
        )

    def destroy(self, session_id: Hashable) -> bool:
        return self._close(session_id, self._teardown)

    def _teardown(self, record: SessionRecord) -> None:
        adapter = record.hardware_handle
        if adapter is None:
            return
        if record.context["advertising"] or Operation.START_ADVERTISING in record.pending:
            self.error_handler.safe_cleanup(adapter.stop_advertising, "stop advertising")
        self.error_handler.safe_cleanup(adapter.close, "peripheral manager adapter close")

    def start_advertising(
        self, session_id: Hashable, name: str, service_uuids: Sequence[str] = ()
    ) -> PendingOperation:
        """
        Begin advertising `name` and `service_uuids`.

        Resolves with `AdvertisingStarted` (carrying an error on failure) or
        `OperationRejected` (`RADIO_NOT_READY`). Coalesced while a request is
        outstanding; a no-op returning a resolved handle while advertising.
        """
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                return self._missing(session_id, Operation.START_ADVERTISING)
            radio_state = record.context["radio_state"]
            if not radio_state.is_ready:
                return self._reject(
                    session_id,
                    Operation.START_ADVERTISING,
                    SessionError(
                        ErrorKind.RADIO_NOT_READY,
                        ERROR_RADIO_NOT_READY.format(radio_state.value),
                    ),
                )
            if Operation.START_ADVERTISING in record.pending:
                return record.pending[Operation.START_ADVERTISING]
            if record.context["advertising"]:
                return PendingOperation.resolved(
                    Operation.START_ADVERTISING, AdvertisingStarted(session_id)
                )
            pending = PendingOperation(Operation.START_ADVERTISING)
            record.pending[Operation.START_ADVERTISING] = pending
            record.context["stop_requested"] = False
            adapter = record.hardware_handle
            delegate = record.callback_handle
        try:
            adapter.start_advertising(name, tuple(service_uuids))
        except Exception as e:  # noqa: BLE001 - reported as AdvertisingStarted
            logger.warning("Adapter failed to start advertising: %s", e)
            delegate.advertising_started(e)
        return pending

    def stop_advertising(self, session_id: Hashable) -> None:
        """
        Stop advertising. Idempotent.

        A start request still waiting on the adapter is withdrawn: its handle
        is cancelled and the adapter is told to stop.
        """
        with self.registry.locked(self.key(session_id)) as record:
            if record is None or not record.active:
                return
            pending = record.take_pending(Operation.START_ADVERTISING)
            if pending is None and not record.context["advertising"]:
                return
            record.context["advertising"] = False
            record.context["stop_requested"] = pending is not None
            adapter = record.hardware_handle
        if pending is not None:
            logger.debug("Withdrawing pending advertising request for %r", session_id)
            pending.cancel()
        self.error_handler.safe_execute(
            adapter.stop_advertising, error_msg="Error stopping advertising"
        )

    def radio_state(self, session_id: Hashable) -> RadioState:
        with self.registry.locked(self.key(session_id)) as record:
            if record is None:
                return RadioState.UNKNOWN
            return record.context["radio_state"]
