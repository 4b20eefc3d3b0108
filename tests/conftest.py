"""
Shared pytest fixtures and fake radio adapters for session tests.

The fakes record every call made by the session layer and expose helpers that
play the hardware's part by invoking the installed delegate synchronously.
"""

from typing import Any, Dict, List, Optional

import pytest  # type: ignore[import-untyped]  # pylint: disable=E0401
from pubsub import pub

from blesession.adapter import (
    CentralAdapter,
    PeripheralAdapter,
    PeripheralManagerAdapter,
)
from blesession.central import CentralSession
from blesession.peripheral import PeripheralSession
from blesession.peripheral_manager import PeripheralManagerSession
from blesession.registry import SessionRegistry
from blesession.state import RadioState
from blesession.store import Environment, Store
from blesession.stream import StreamEmpty

FIXED_CLOCK = 1700000000.0


class FakePeripheralAdapter(PeripheralAdapter):
    """Peripheral handle whose discovery results are delivered by the test."""

    def __init__(self, device_id):
        self._device_id = device_id
        self.delegate = None
        self.calls: List[tuple] = []
        self.discovered: Optional[tuple] = None
        self.fail_discover: Optional[Exception] = None

    @property
    def device_id(self):
        return self._device_id

    def set_delegate(self, delegate) -> None:
        self.calls.append(("set_delegate", delegate))
        self.delegate = delegate

    def discover_services(self, service_filter=None) -> None:
        self.calls.append(("discover_services", service_filter))
        if self.fail_discover is not None:
            raise self.fail_discover

    def services(self):
        return self.discovered

    def finish_discovery(self, services=None, error=None) -> None:
        if error is None:
            self.discovered = tuple(services or ())
        if self.delegate is not None:
            self.delegate.services_discovered(services, error)


class FakeCentralAdapter(CentralAdapter):
    """Central adapter driven entirely by the test."""

    def __init__(self, delegate, power: RadioState = RadioState.UNKNOWN):
        self.delegate = delegate
        self.power = power
        self.calls: List[tuple] = []
        self.peripherals: Dict[Any, FakePeripheralAdapter] = {}
        self.connected_ids: set = set()
        self.closed = False
        self.fail_start_scan: Optional[Exception] = None
        self.fail_connect: Optional[Exception] = None

    def power_state(self) -> RadioState:
        return self.power

    def start_scan(self, service_filter=None) -> None:
        self.calls.append(("start_scan", service_filter))
        if self.fail_start_scan is not None:
            raise self.fail_start_scan

    def stop_scan(self) -> None:
        self.calls.append(("stop_scan",))

    def connect(self, device_id, options=None) -> None:
        self.calls.append(("connect", device_id, options))
        if self.fail_connect is not None:
            raise self.fail_connect

    def disconnect(self, device_id) -> None:
        self.calls.append(("disconnect", device_id))

    def peripheral(self, device_id):
        if device_id not in self.connected_ids:
            return None
        return self.peripherals.setdefault(device_id, FakePeripheralAdapter(device_id))

    def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    # Hardware side

    def set_power(self, state: RadioState) -> None:
        self.power = state
        self.delegate.power_state_changed(state)

    def advertise(self, device_id, name=None, rssi=-60, **advertisement) -> None:
        self.delegate.advertisement_received(device_id, name, advertisement, rssi)

    def accept(self, device_id) -> None:
        self.connected_ids.add(device_id)
        self.delegate.connected(device_id)

    def refuse(self, device_id, error="connect failed") -> None:
        self.delegate.connect_failed(device_id, error)

    def drop(self, device_id, error=None) -> None:
        self.connected_ids.discard(device_id)
        self.delegate.disconnected(device_id, error)


class FakePeripheralManagerAdapter(PeripheralManagerAdapter):
    """Peripheral-manager adapter driven entirely by the test."""

    def __init__(self, delegate, power: RadioState = RadioState.UNKNOWN):
        self.delegate = delegate
        self.power = power
        self.calls: List[tuple] = []
        self.closed = False

    def power_state(self) -> RadioState:
        return self.power

    def start_advertising(self, name, service_uuids=()) -> None:
        self.calls.append(("start_advertising", name, tuple(service_uuids)))

    def stop_advertising(self) -> None:
        self.calls.append(("stop_advertising",))

    def close(self) -> None:
        self.calls.append(("close",))
        self.closed = True

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]

    # Hardware side

    def set_power(self, state: RadioState) -> None:
        self.power = state
        self.delegate.power_state_changed(state)

    def advertising_result(self, error=None) -> None:
        self.delegate.advertising_started(error)

    def central_connects(self, central_id) -> None:
        self.delegate.central_connected(central_id)

    def central_leaves(self, central_id) -> None:
        self.delegate.central_disconnected(central_id)

    def remote_discovery(self, central_id, error=None) -> None:
        self.delegate.services_discovered_by_remote(central_id, error)


class AdapterFactory:
    """Adapter factory recording every adapter it builds."""

    def __init__(self, adapter_cls, power: RadioState = RadioState.UNKNOWN):
        self.adapter_cls = adapter_cls
        self.power = power
        self.created: List[Any] = []
        self.fail: Optional[Exception] = None

    def __call__(self, delegate):
        if self.fail is not None:
            raise self.fail
        adapter = self.adapter_cls(delegate, power=self.power)
        self.created.append(adapter)
        return adapter

    @property
    def last(self):
        return self.created[-1]


def drain(stream) -> List[Any]:
    """Collect every event currently buffered on `stream` without blocking."""
    events = []
    while True:
        try:
            event = stream.get(timeout=0)
        except StreamEmpty:
            return events
        if event is None:
            return events
        events.append(event)


@pytest.fixture
def registry():
    """A fresh session registry."""
    return SessionRegistry()


@pytest.fixture
def central_factory():
    return AdapterFactory(FakeCentralAdapter)


@pytest.fixture
def pm_factory():
    return AdapterFactory(FakePeripheralManagerAdapter)


@pytest.fixture
def central(registry, central_factory):
    """CentralSession over fake adapters with a fixed clock."""
    return CentralSession(registry, central_factory, clock=lambda: FIXED_CLOCK)


@pytest.fixture
def peripheral(registry):
    return PeripheralSession(registry)


@pytest.fixture
def peripheral_manager(registry, pm_factory):
    return PeripheralManagerSession(registry, pm_factory)


@pytest.fixture
def environment(central, peripheral, peripheral_manager):
    return Environment(
        central=central, peripheral=peripheral, peripheral_manager=peripheral_manager
    )


@pytest.fixture
def store(environment):
    """
    A started Store over fake adapters, closed after the test.

    Pubsub listeners registered by the test are removed on teardown.
    """
    running = Store(environment).start()
    yield running
    running.close()
    pub.unsubAll()
