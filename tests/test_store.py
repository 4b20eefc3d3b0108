"""End-to-end tests for the Store runtime over fake adapters."""

import time

from pubsub import pub

from blesession.constants import PERIPHERAL_SESSION_ID
from blesession.errors import ErrorKind
from blesession.intents import (
    Appear,
    Connect,
    Disappear,
    DiscoverServices,
    StartAdvertising,
    StartScan,
)
from blesession.reducer import reduce
from blesession.state import DiscoveryStatus, RadioState
from blesession.store import TOPIC_INTENT_REJECTED, TOPIC_STATE_CHANGED, Store


def wait_for(predicate, timeout=2.0):
    """Poll `predicate` until it holds; hardware events are reduced asynchronously."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def appear(store, central_factory, power=RadioState.POWERED_ON):
    store.send(Appear())
    assert store.wait_until_idle(timeout=2.0)
    adapter = central_factory.last
    adapter.set_power(power)
    assert wait_for(lambda: store.state.radio_state is power)
    return adapter


class TestStore:
    """Intents and hardware events flowing through one reducer thread."""

    def test_appear_creates_sessions(self, store, central_factory, pm_factory):
        store.send(Appear())

        assert store.wait_until_idle(timeout=2.0)
        assert store.state.is_active
        assert len(central_factory.created) == 1
        assert len(pm_factory.created) == 1

    def test_full_connect_and_discover_flow(self, store, central_factory, environment):
        adapter = appear(store, central_factory)

        store.send(StartScan())
        assert store.wait_until_idle(timeout=2.0)
        adapter.advertise("A", name="Widget", rssi=-50)
        assert wait_for(lambda: "A" in store.state.discovered)
        device = store.state.discovered["A"]
        assert (device.name, device.rssi) == ("Widget", -50)

        store.send(Connect("A"))
        assert store.wait_until_idle(timeout=2.0)
        assert store.state.is_connecting
        adapter.accept("A")
        assert wait_for(lambda: environment.peripheral.is_active(PERIPHERAL_SESSION_ID))
        assert store.state.is_connected

        store.send(DiscoverServices())
        assert store.wait_until_idle(timeout=2.0)
        adapter.peripherals["A"].finish_discovery(["svc1", "svc2"])
        assert wait_for(
            lambda: store.state.last_discovery.status is DiscoveryStatus.COMPLETED
        )
        assert store.state.last_discovery.services == ("svc1", "svc2")

    def test_power_loss_stops_scanning(self, store, central_factory):
        adapter = appear(store, central_factory)
        store.send(StartScan())
        assert store.wait_until_idle(timeout=2.0)
        assert store.state.is_scanning

        adapter.set_power(RadioState.POWERED_OFF)

        assert wait_for(lambda: not store.state.is_scanning)
        assert not store.state.is_enabled

    def test_rejected_intents_are_published(self, store, central_factory):
        rejected = []

        def on_rejected(error, intent, store):
            rejected.append((error.kind, intent))

        pub.subscribe(on_rejected, TOPIC_INTENT_REJECTED)
        appear(store, central_factory, power=RadioState.POWERED_OFF)

        store.send(StartScan())
        store.send(Connect("ghost"))
        assert store.wait_until_idle(timeout=2.0)

        assert rejected == [
            (ErrorKind.RADIO_NOT_READY, StartScan()),
            (ErrorKind.RADIO_NOT_READY, Connect("ghost")),
        ]
        assert central_factory.last.calls == []

    def test_state_changes_are_published(self, store):
        states = []

        def on_change(state, store):
            states.append(state)

        pub.subscribe(on_change, TOPIC_STATE_CHANGED)
        store.send(Appear())
        store.send(Appear())
        assert store.wait_until_idle(timeout=2.0)

        assert len(states) == 1
        assert states[0].is_active

    def test_connect_timeout_returns_to_idle(self, store, central_factory):
        adapter = appear(store, central_factory)
        store.send(StartScan())
        assert store.wait_until_idle(timeout=2.0)
        adapter.advertise("A")
        assert wait_for(lambda: "A" in store.state.discovered)

        store.send(Connect("A"))
        assert store.wait_until_idle(timeout=2.0)
        adapter.refuse("A", "timed out")

        assert wait_for(lambda: store.state.connection is None)
        assert store.state.last_error.kind is ErrorKind.HARDWARE_ERROR

    def test_advertising_round_trip(self, store, central_factory, pm_factory):
        appear(store, central_factory)
        pm_adapter = pm_factory.last
        pm_adapter.set_power(RadioState.POWERED_ON)
        assert wait_for(lambda: store.state.peripheral_manager_state.is_ready)

        store.send(StartAdvertising("Demo", ["180d"]))
        assert store.wait_until_idle(timeout=2.0)
        pm_adapter.advertising_result("not allowed")

        assert pm_adapter.calls == [("start_advertising", "Demo", ("180d",))]
        assert wait_for(lambda: not store.state.is_advertising)

    def test_disappear_releases_hardware(self, store, central_factory, pm_factory, registry):
        appear(store, central_factory)

        store.send(Disappear())
        assert store.wait_until_idle(timeout=2.0)

        assert central_factory.last.closed
        assert pm_factory.last.closed
        assert len(registry) == 0
        assert not store.state.is_active

    def test_unknown_action_does_not_stop_store(self, store):
        store.send(object())
        store.send(Appear())

        assert store.wait_until_idle(timeout=2.0)
        assert store.is_running
        assert store.state.is_active


def test_close_destroys_sessions(environment, central_factory, registry):
    with Store(environment) as store:
        store.send(Appear())
        assert store.wait_until_idle(timeout=2.0)
        assert len(registry) == 2

    assert not store.is_running
    assert central_factory.last.closed
    assert len(registry) == 0


def test_reducer_failure_does_not_stop_store(environment):
    def flaky(state, action):
        if isinstance(action, StartScan):
            raise RuntimeError("reducer bug")
        return reduce(state, action)

    with Store(environment, reducer=flaky) as store:
        store.send(StartScan())
        store.send(Appear())

        assert store.wait_until_idle(timeout=2.0)
        assert store.is_running
        assert store.state.is_active
