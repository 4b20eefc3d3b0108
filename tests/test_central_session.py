"""Tests for CentralSession: scanning, connecting and session lifecycle."""

from concurrent.futures import CancelledError

import pytest

from blesession.errors import ErrorKind
from blesession.events import (
    Connected,
    DeviceDiscovered,
    Disconnected,
    Operation,
    OperationRejected,
    RadioStateChanged,
    ScanFailed,
)
from blesession.models import DiscoveredDevice
from blesession.state import CentralPhase, RadioState

from conftest import FIXED_CLOCK, drain


def open_session(central, factory, power=RadioState.POWERED_ON, session_id="c"):
    """Create a session, report `power` from the hardware and discard the setup events."""
    stream = central.create(session_id)
    adapter = factory.last
    adapter.set_power(power)
    drain(stream)
    return stream, adapter


def scanned(central, factory, *device_ids):
    """Open a powered session and scan until `device_ids` have been seen."""
    stream, adapter = open_session(central, factory)
    central.start_scan("c")
    for device_id in device_ids:
        adapter.advertise(device_id, name=f"name-{device_id}")
    drain(stream)
    return stream, adapter


class TestCreateDestroy:
    """Session lifecycle."""

    def test_create_with_unknown_power_emits_nothing(self, central, central_factory):
        stream = central.create("c")

        assert drain(stream) == []
        assert central.is_active("c")
        assert central.phase("c") is CentralPhase.UNINITIALIZED
        assert central.radio_state("c") is RadioState.UNKNOWN

    def test_known_initial_power_state_is_announced(self, central, central_factory):
        central_factory.power = RadioState.POWERED_ON
        stream = central.create("c")

        assert drain(stream) == [RadioStateChanged("c", RadioState.POWERED_ON)]
        assert central.phase("c") is CentralPhase.IDLE

    def test_power_callback_is_forwarded(self, central, central_factory):
        stream = central.create("c")
        central_factory.last.set_power(RadioState.POWERED_OFF)

        assert drain(stream) == [RadioStateChanged("c", RadioState.POWERED_OFF)]
        assert central.radio_state("c") is RadioState.POWERED_OFF

    def test_duplicate_id_is_rejected_as_event(self, central, central_factory):
        first = central.create("c")
        second = central.create("c")

        events = drain(second)
        assert len(events) == 1
        assert isinstance(events[0], OperationRejected)
        assert events[0].operation is Operation.CREATE
        assert events[0].error.kind is ErrorKind.DUPLICATE_SESSION
        assert second.finished
        # The original session is untouched
        assert len(central_factory.created) == 1
        assert not first.finished
        assert central.is_active("c")

    def test_failing_adapter_factory_is_reported(self, central, central_factory):
        central_factory.fail = RuntimeError("no radio stack")
        stream = central.create("c")

        events = drain(stream)
        assert events[0].operation is Operation.CREATE
        assert events[0].error.kind is ErrorKind.HARDWARE_ERROR
        assert stream.finished
        assert not central.is_active("c")

    def test_destroy_releases_hardware_and_finishes_stream(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        central.connect("c", "dev-1")

        assert central.destroy("c")

        assert adapter.call_names()[-3:] == ["stop_scan", "disconnect", "close"]
        assert stream.finished
        assert drain(stream) == []
        assert not central.is_active("c")

    def test_destroy_cancels_pending_operations(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        pending = central.connect("c", "dev-1")

        central.destroy("c")

        assert pending.cancelled()
        with pytest.raises(CancelledError):
            pending.result(timeout=0)

    def test_callbacks_after_destroy_are_dropped(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        central.connect("c", "dev-1")
        central.destroy("c")

        adapter.accept("dev-1")
        adapter.set_power(RadioState.POWERED_OFF)

        assert drain(stream) == []

    def test_destroy_is_idempotent(self, central, central_factory):
        open_session(central, central_factory)

        assert central.destroy("c")
        assert not central.destroy("c")
        assert not central.destroy("never-created")
        assert central_factory.last.call_names().count("close") == 1

    def test_operations_on_unknown_session_are_noops(self, central):
        pending = central.start_scan("missing")

        assert pending.cancelled()
        assert central.connect("missing", "dev").cancelled()
        central.stop_scan("missing")
        assert central.phase("missing") is CentralPhase.UNINITIALIZED

    def test_session_id_can_be_reused_after_destroy(self, central, central_factory):
        open_session(central, central_factory)
        central.destroy("c")

        stream = central.create("c")

        assert not stream.finished
        assert len(central_factory.created) == 2


class TestScanning:
    """Scan lifecycle and advertisement handling."""

    def test_scan_requires_powered_radio(self, central, central_factory):
        stream = central.create("c")

        pending = central.start_scan("c")

        event = pending.result(timeout=0)
        assert isinstance(event, OperationRejected)
        assert event.error.kind is ErrorKind.RADIO_NOT_READY
        assert drain(stream) == [event]
        assert central_factory.last.calls == []

    def test_scan_forwards_filter_and_reports_devices(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)

        central.start_scan("c", ["180d"])
        adapter.advertise("dev-1", name="Heart", rssi=-42, service_uuids=["180d"])

        assert adapter.calls == [("start_scan", ["180d"])]
        assert drain(stream) == [
            DeviceDiscovered(
                "c",
                DiscoveredDevice(
                    id="dev-1",
                    name="Heart",
                    advertisement={"service_uuids": ["180d"]},
                    rssi=-42,
                    last_seen=FIXED_CLOCK,
                ),
            )
        ]
        assert central.phase("c") is CentralPhase.SCANNING

    def test_advertisements_outside_scan_are_ignored(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)

        adapter.advertise("dev-1")

        assert drain(stream) == []

    def test_repeated_start_scan_is_coalesced(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)

        first = central.start_scan("c")
        second = central.start_scan("c")

        assert first is second
        assert adapter.call_names() == ["start_scan"]

    def test_stop_scan_resolves_scan_and_is_idempotent(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)
        pending = central.start_scan("c")

        central.stop_scan("c")
        central.stop_scan("c")
        adapter.advertise("dev-1")

        assert pending.result(timeout=0) is None
        assert adapter.call_names() == ["start_scan", "stop_scan"]
        assert drain(stream) == []

    def test_power_loss_mid_scan_stops_scan(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)
        pending = central.start_scan("c")

        adapter.set_power(RadioState.POWERED_OFF)
        adapter.advertise("dev-1")

        assert pending.result(timeout=0) is None
        assert drain(stream) == [RadioStateChanged("c", RadioState.POWERED_OFF)]
        assert central.phase("c") is CentralPhase.UNINITIALIZED

    def test_adapter_scan_failure_is_reported(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)
        adapter.fail_start_scan = RuntimeError("scanner busy")

        pending = central.start_scan("c")

        event = pending.result(timeout=0)
        assert isinstance(event, ScanFailed)
        assert event.error.kind is ErrorKind.HARDWARE_ERROR
        assert drain(stream) == [event]
        assert central.phase("c") is CentralPhase.IDLE


class TestConnecting:
    """Connect/disconnect preconditions and outcomes."""

    def test_connect_to_unscanned_device_is_rejected(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)

        event = central.connect("c", "ghost").result(timeout=0)

        assert event.error.kind is ErrorKind.UNKNOWN_DEVICE
        assert drain(stream) == [event]
        assert "connect" not in adapter.call_names()

    def test_radio_check_comes_before_device_check(self, central, central_factory):
        stream = central.create("c")

        event = central.connect("c", "ghost").result(timeout=0)

        assert event.error.kind is ErrorKind.RADIO_NOT_READY

    def test_connect_success(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")

        pending = central.connect("c", "dev-1", {"timeout": 5})
        assert central.phase("c") is CentralPhase.CONNECTING
        adapter.accept("dev-1")

        assert adapter.calls[-1] == ("connect", "dev-1", {"timeout": 5})
        assert pending.result(timeout=0) == Connected("c", "dev-1")
        assert drain(stream) == [Connected("c", "dev-1")]
        assert central.phase("c") is CentralPhase.CONNECTED

    def test_second_connect_while_outstanding_is_rejected(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1", "dev-2")
        central.connect("c", "dev-1")

        event = central.connect("c", "dev-2").result(timeout=0)

        assert event.error.kind is ErrorKind.ALREADY_CONNECTING
        assert adapter.call_names().count("connect") == 1

    def test_connect_timeout_reports_disconnected_with_error(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        pending = central.connect("c", "dev-1")

        adapter.refuse("dev-1", "timed out")

        event = pending.result(timeout=0)
        assert isinstance(event, Disconnected)
        assert event.error.kind is ErrorKind.HARDWARE_ERROR
        assert event.error.message == "timed out"
        assert central.phase("c") is CentralPhase.SCANNING

    def test_adapter_connect_exception_is_reported(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        adapter.fail_connect = OSError("radio gone")

        event = central.connect("c", "dev-1").result(timeout=0)

        assert isinstance(event, Disconnected)
        assert event.error.kind is ErrorKind.HARDWARE_ERROR

    def test_new_scan_epoch_forgets_devices(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        central.stop_scan("c")
        central.start_scan("c")

        event = central.connect("c", "dev-1").result(timeout=0)

        assert event.error.kind is ErrorKind.UNKNOWN_DEVICE

    def test_disconnect_cancels_pending_connect(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        connect = central.connect("c", "dev-1")

        disconnect = central.disconnect("c", "dev-1")
        adapter.drop("dev-1")

        assert adapter.calls[-1] == ("disconnect", "dev-1")
        assert connect.result(timeout=0) == Disconnected("c", "dev-1")
        assert disconnect.result(timeout=0) == Disconnected("c", "dev-1")

    def test_disconnect_unknown_device_is_rejected(self, central, central_factory):
        stream, adapter = open_session(central, central_factory)

        event = central.disconnect("c", "dev-1").result(timeout=0)

        assert event.error.kind is ErrorKind.NOT_CONNECTED

    def test_remote_disconnect_is_reported(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        central.connect("c", "dev-1")
        adapter.accept("dev-1")
        drain(stream)

        adapter.drop("dev-1", "link lost")

        events = drain(stream)
        assert len(events) == 1
        assert events[0].device_id == "dev-1"
        assert events[0].error.kind is ErrorKind.HARDWARE_ERROR

    def test_unsolicited_connect_callback_is_ignored(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")

        adapter.accept("dev-1")

        assert drain(stream) == []

    def test_peripheral_handle_requires_connection(self, central, central_factory):
        stream, adapter = scanned(central, central_factory, "dev-1")
        central.connect("c", "dev-1")

        assert central.peripheral_handle("c", "dev-1") is None

        adapter.accept("dev-1")
        handle = central.peripheral_handle("c", "dev-1")

        assert handle is not None
        assert handle.device_id == "dev-1"
