"""Central-role sessions: scanning for and connecting to devices."""

import time
from typing import Any, Callable, Hashable, Iterable, Mapping, Optional

from blesession.adapter import CentralAdapterFactory, CentralDelegate, PeripheralAdapter
from blesession.constants import (
    ERROR_ALREADY_CONNECTING,
    ERROR_NOT_CONNECTED,
    ERROR_RADIO_NOT_READY,
    ERROR_UNKNOWN_DEVICE,
    logger,
)
from blesession.errors import ErrorKind, SessionError
from blesession.events import (
    Connected,
    DeviceDiscovered,
    Disconnected,
    Operation,
    RadioStateChanged,
    ScanFailed,
)
from blesession.models import DiscoveredDevice
from blesession.registry import SessionRecord, SessionRegistry
from blesession.session import SessionDelegate, SessionFamily
from blesession.state import CentralPhase, RadioState
from blesession.stream import EventStream, PendingOperation

__all__ = ["CentralSession"]

_CONNECT_OPERATIONS = (Operation.CONNECT, Operation.DISCONNECT)


class _CentralDelegate(SessionDelegate, CentralDelegate):
    """Turns central adapter callbacks into session events."""

    family: "CentralSession"

    def power_state_changed(self, state: RadioState) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            record.context["radio_state"] = state
            if not state.is_ready and record.context["scanning"]:
                logger.debug("Radio left powered-on state while scanning; scan stopped")
                record.context["scanning"] = False
                pending = record.take_pending(Operation.START_SCAN)
                if pending is not None:
                    pending.resolve(None)
            self._emit(RadioStateChanged(self.session_id, state))

    def advertisement_received(
        self,
        device_id: Hashable,
        name: Optional[str],
        advertisement: Mapping[str, Any],
        rssi: int,
    ) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None or not record.context["scanning"]:
                logger.debug("Ignoring advertisement from %r outside a scan", device_id)
                return
            record.context["known_devices"].add(device_id)
            device = DiscoveredDevice(
                id=device_id,
                name=name,
                advertisement=dict(advertisement or {}),
                rssi=int(rssi),
                last_seen=self.family.clock(),
            )
            self._emit(DeviceDiscovered(self.session_id, device))

    def scan_failed(self, error: Any) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            record.context["scanning"] = False
            self._emit(
                ScanFailed(self.session_id, SessionError.hardware(error)),
                resolves=(Operation.START_SCAN,),
            )

    def connected(self, device_id: Hashable) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None or record.context["connecting"] != device_id:
                logger.debug("Ignoring unsolicited connect from %r", device_id)
                return
            record.context["connecting"] = None
            record.context["connected"].add(device_id)
            self._emit(
                Connected(self.session_id, device_id), resolves=(Operation.CONNECT,)
            )

    def connect_failed(self, device_id: Hashable, error: Any) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None or record.context["connecting"] != device_id:
                logger.debug("Ignoring connect failure for %r: %s", device_id, error)
                return
            record.context["connecting"] = None
            self._emit(
                Disconnected(self.session_id, device_id, SessionError.hardware(error)),
                resolves=_CONNECT_OPERATIONS,
            )

    def disconnected(self, device_id: Hashable, error: Optional[Any] = None) -> None:
        with self.family.registry.locked(self.key) as record:
            if record is None:
                return
            context = record.context
            if context["connecting"] == device_id:
                context["connecting"] = None
            elif device_id in context["connected"]:
                context["connected"].discard(device_id)
            else:
                logger.debug("Ignoring disconnect for unknown device %r", device_id)
                return
            reported = SessionError.hardware(error) if error is not None else None
            self._emit(
                Disconnected(self.session_id, device_id, reported),
                resolves=_CONNECT_OPERATIONS,
            )


class CentralSession(SessionFamily):
    """
    Scanning/connecting sessions against the central role of the radio.

    Every operation is fire-and-forget: outcomes are reported on the event
    stream returned by `create`, and each call returns a `PendingOperation`
    resolved by the event that completed it.
    """

    kind = "central"
    radio_event = RadioStateChanged

    def __init__(
        self,
        registry: SessionRegistry,
        adapter_factory: CentralAdapterFactory,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(registry)
        self.adapter_factory = adapter_factory
        self.clock = clock

    def create(self, session_id: Hashable) -> EventStream:
        """Create a central session; events arrive on the returned stream."""
        return self._open(
            session_id,
            lambda key: _CentralDelegate(self, key),
            self.adapter_factory,
            context={
                "radio_state": RadioState.UNKNOWN,
                "scanning": False,
                "known_devices": set(),
                "connecting": None,
                "connected": set(),
            },
        )

    def destroy(self, session_id: Hashable) -> bool:
        """Stop scanning, drop connections, release the adapter and end the stream."""
        return self._close(session_id, self._teardown)

    def _teardown(self, record: SessionRecord) -> None:
        adapter = record.hardware_handle
        if adapter is None:
            return
        with self.registry.lock:
            scanning = record.context["scanning"]
            record.context["scanning"] = False
            devices = list(record.context["connected"])
            if record.context["connecting"] is not None:
                devices.append(record.context["connecting"])
        if scanning:
            self.error_handler.safe_cleanup(adapter.stop_scan, "stop scan")
        for device_id in devices:
            self.error_handler.safe_cleanup(
                lambda d=device_id: adapter.disconnect(d), f"disconnect {device_id!r}"
            )
        self.error_handler.safe_cleanup(adapter.close, "central adapter close")

    def start_scan(
        self, session_id: Hashable, service_filter: Optional[Iterable[str]] = None
    ) -> PendingOperation:
        """
        Begin scanning and start a new scan epoch.

        The returned operation resolves with None when the scan ends normally,
        with `ScanFailed` on a hardware failure, or with `OperationRejected`
        (`RADIO_NOT_READY`). While a scan is active further calls are coalesced
        and return the same operation.
        """
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                return self._missing(session_id, Operation.START_SCAN)
            radio_state = record.context["radio_state"]
            if not radio_state.is_ready:
                return self._reject(
                    session_id,
                    Operation.START_SCAN,
                    SessionError(
                        ErrorKind.RADIO_NOT_READY,
                        ERROR_RADIO_NOT_READY.format(radio_state.value),
                    ),
                )
            if record.context["scanning"]:
                logger.debug("Scan already active on %r; coalescing", session_id)
                return record.pending[Operation.START_SCAN]
            record.context["scanning"] = True
            record.context["known_devices"] = set()
            pending = PendingOperation(Operation.START_SCAN)
            record.pending[Operation.START_SCAN] = pending
            adapter = record.hardware_handle
            delegate = record.callback_handle
        filters = list(service_filter) if service_filter else None
        try:
            adapter.start_scan(filters)
        except Exception as e:  # noqa: BLE001 - reported as ScanFailed
            logger.warning("Adapter failed to start scan: %s", e)
            delegate.scan_failed(e)
        return pending

    def stop_scan(self, session_id: Hashable) -> None:
        """Stop scanning. Idempotent."""
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active or not record.context["scanning"]:
                return
            record.context["scanning"] = False
            pending = record.take_pending(Operation.START_SCAN)
            adapter = record.hardware_handle
        if pending is not None:
            pending.resolve(None)
        self.error_handler.safe_execute(adapter.stop_scan, error_msg="Error stopping scan")

    def connect(
        self,
        session_id: Hashable,
        device_id: Hashable,
        options: Optional[Mapping[str, Any]] = None,
    ) -> PendingOperation:
        """
        Request a connection to a device seen in the current scan epoch.

        Resolves with `Connected`, with `Disconnected` carrying an error when
        the attempt fails, or with `OperationRejected` for `RADIO_NOT_READY`,
        `UNKNOWN_DEVICE` or `ALREADY_CONNECTING`.
        """
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                return self._missing(session_id, Operation.CONNECT)
            context = record.context
            if not context["radio_state"].is_ready:
                return self._reject(
                    session_id,
                    Operation.CONNECT,
                    SessionError(
                        ErrorKind.RADIO_NOT_READY,
                        ERROR_RADIO_NOT_READY.format(context["radio_state"].value),
                    ),
                )
            if device_id not in context["known_devices"]:
                return self._reject(
                    session_id,
                    Operation.CONNECT,
                    SessionError(
                        ErrorKind.UNKNOWN_DEVICE, ERROR_UNKNOWN_DEVICE.format(device_id)
                    ),
                )
            busy = context["connecting"]
            if busy is None and context["connected"]:
                busy = next(iter(context["connected"]))
            if busy is not None:
                return self._reject(
                    session_id,
                    Operation.CONNECT,
                    SessionError(
                        ErrorKind.ALREADY_CONNECTING, ERROR_ALREADY_CONNECTING.format(busy)
                    ),
                )
            context["connecting"] = device_id
            pending = PendingOperation(Operation.CONNECT)
            record.pending[Operation.CONNECT] = pending
            adapter = record.hardware_handle
            delegate = record.callback_handle
        try:
            adapter.connect(device_id, dict(options or {}))
        except Exception as e:  # noqa: BLE001 - reported as Disconnected
            logger.warning("Adapter failed to connect to %r: %s", device_id, e)
            delegate.connect_failed(device_id, e)
        return pending

    def disconnect(self, session_id: Hashable, device_id: Hashable) -> PendingOperation:
        """Cancel a pending connect or close a connection; resolves with `Disconnected`."""
        key = self.key(session_id)
        with self.registry.locked(key) as record:
            if record is None or not record.active:
                return self._missing(session_id, Operation.DISCONNECT)
            context = record.context
            if context["connecting"] != device_id and device_id not in context["connected"]:
                return self._reject(
                    session_id,
                    Operation.DISCONNECT,
                    SessionError(ErrorKind.NOT_CONNECTED, ERROR_NOT_CONNECTED),
                )
            pending = record.pending.get(Operation.DISCONNECT)
            if pending is None:
                pending = PendingOperation(Operation.DISCONNECT)
                record.pending[Operation.DISCONNECT] = pending
            adapter = record.hardware_handle
            delegate = record.callback_handle
        try:
            adapter.disconnect(device_id)
        except Exception as e:  # noqa: BLE001 - reported as Disconnected
            logger.warning("Adapter failed to disconnect %r: %s", device_id, e)
            delegate.disconnected(device_id, e)
        return pending

    def peripheral_handle(
        self, session_id: Hashable, device_id: Hashable
    ) -> Optional[PeripheralAdapter]:
        """Hardware handle for a connected device, or None if it is not connected."""
        with self.registry.locked(self.key(session_id)) as record:
            if record is None or device_id not in record.context["connected"]:
                return None
            adapter = record.hardware_handle
        return self.error_handler.safe_execute(
            lambda: adapter.peripheral(device_id),
            error_msg=f"Unable to retrieve peripheral {device_id!r}",
        )

    def radio_state(self, session_id: Hashable) -> RadioState:
        with self.registry.locked(self.key(session_id)) as record:
            if record is None:
                return RadioState.UNKNOWN
            return record.context["radio_state"]

    def phase(self, session_id: Hashable) -> CentralPhase:
        """Current lifecycle phase of the session."""
        with self.registry.locked(self.key(session_id)) as record:
            if record is None or not record.active:
                return CentralPhase.UNINITIALIZED
            context = record.context
            if context["connected"]:
                return CentralPhase.CONNECTED
            if context["connecting"] is not None:
                return CentralPhase.CONNECTING
            if context["scanning"]:
                return CentralPhase.SCANNING
            if context["radio_state"].is_ready:
                return CentralPhase.IDLE
            return CentralPhase.UNINITIALIZED
