"""Pure state transitions: ``reduce(state, action) -> (state, commands)``.

The reducer owns the application state tree. It never touches hardware,
never blocks and never logs; everything it wants done is returned as a
list of commands for the store to execute against the sessions.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, FrozenSet, Hashable, List, Mapping, Optional, Tuple

from blesession import commands as cmd
from blesession import events as ev
from blesession import intents
from blesession.constants import (
    CENTRAL_SESSION_ID,
    ERROR_ALREADY_CONNECTING,
    ERROR_DISCOVERY_IN_PROGRESS,
    ERROR_NOT_CONNECTED,
    ERROR_RADIO_NOT_READY,
    ERROR_UNKNOWN_DEVICE,
    PERIPHERAL_MANAGER_SESSION_ID,
    PERIPHERAL_SESSION_ID,
)
from blesession.errors import ErrorKind, SessionError
from blesession.events import Operation
from blesession.models import Connection, DiscoveredDevice, ServiceDiscoveryState
from blesession.state import ConnectionState, RadioState, is_valid_transition

__all__ = ["AppState", "reduce"]

Commands = List[Any]
Reduction = Tuple["AppState", Commands]


@dataclass(frozen=True)
class AppState:
    """Read-only snapshot consumed by the presentation layer."""

    is_active: bool = False
    radio_state: RadioState = RadioState.UNKNOWN
    is_scanning: bool = False
    discovered: Mapping[Hashable, DiscoveredDevice] = field(default_factory=dict)
    connection: Optional[Connection] = None
    service_discovery: ServiceDiscoveryState = ServiceDiscoveryState()
    peripheral_manager_state: RadioState = RadioState.UNKNOWN
    is_advertising: bool = False
    connected_centrals: FrozenSet[Hashable] = frozenset()
    remote_discoveries: Mapping[Hashable, Optional[SessionError]] = field(
        default_factory=dict
    )
    last_error: Optional[SessionError] = None

    @property
    def is_enabled(self) -> bool:
        """True when the central radio is powered on."""
        return self.radio_state.is_ready

    @property
    def connection_state(self) -> ConnectionState:
        if self.connection is None:
            return ConnectionState.DISCONNECTED
        return self.connection.state

    @property
    def is_connecting(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTING

    @property
    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    @property
    def last_discovery(self) -> ServiceDiscoveryState:
        return self.service_discovery


def _reject(state: AppState, action, kind: ErrorKind, message: str) -> Reduction:
    return state, [cmd.RejectIntent(SessionError(kind, message), action)]


def _drop_connection(state: AppState, error: Optional[SessionError] = None) -> AppState:
    """Forget the current connection; an in-flight discovery fails with NOT_CONNECTED."""
    discovery = state.service_discovery
    if discovery.is_in_progress:
        discovery = ServiceDiscoveryState.failed(
            error or SessionError(ErrorKind.NOT_CONNECTED, ERROR_NOT_CONNECTED)
        )
    return replace(
        state,
        connection=None,
        service_discovery=discovery,
        last_error=error or state.last_error,
    )


# Intents


def _appear(state: AppState, action: intents.Appear) -> Reduction:
    if state.is_active:
        return state, []
    return replace(state, is_active=True), [
        cmd.CreateCentralSession(CENTRAL_SESSION_ID),
        cmd.CreatePeripheralManagerSession(PERIPHERAL_MANAGER_SESSION_ID),
    ]


def _disappear(state: AppState, action: intents.Disappear) -> Reduction:
    if not state.is_active:
        return state, []
    commands: Commands = []
    if state.connection is not None:
        commands.append(cmd.DestroyPeripheralSession(PERIPHERAL_SESSION_ID))
    commands.append(cmd.DestroyCentralSession(CENTRAL_SESSION_ID))
    commands.append(cmd.DestroyPeripheralManagerSession(PERIPHERAL_MANAGER_SESSION_ID))
    return AppState(), commands


def _start_scan(state: AppState, action: intents.StartScan) -> Reduction:
    if not state.radio_state.is_ready:
        return _reject(
            state,
            action,
            ErrorKind.RADIO_NOT_READY,
            ERROR_RADIO_NOT_READY.format(state.radio_state.value),
        )
    state = replace(state, is_scanning=True, discovered={}, last_error=None)
    return state, [cmd.BeginScan(CENTRAL_SESSION_ID, action.service_filter)]


def _stop_scan(state: AppState, action: intents.StopScan) -> Reduction:
    if not state.is_scanning:
        return state, []
    return replace(state, is_scanning=False), [cmd.EndScan(CENTRAL_SESSION_ID)]


def _connect(state: AppState, action: intents.Connect) -> Reduction:
    if not state.radio_state.is_ready:
        return _reject(
            state,
            action,
            ErrorKind.RADIO_NOT_READY,
            ERROR_RADIO_NOT_READY.format(state.radio_state.value),
        )
    if action.device_id not in state.discovered:
        return _reject(
            state,
            action,
            ErrorKind.UNKNOWN_DEVICE,
            ERROR_UNKNOWN_DEVICE.format(action.device_id),
        )
    if state.connection is not None:
        return _reject(
            state,
            action,
            ErrorKind.ALREADY_CONNECTING,
            ERROR_ALREADY_CONNECTING.format(state.connection.device_id),
        )
    state = replace(
        state,
        connection=Connection(action.device_id, ConnectionState.CONNECTING),
        service_discovery=ServiceDiscoveryState(),
        last_error=None,
    )
    return state, [
        cmd.ConnectDevice(CENTRAL_SESSION_ID, action.device_id, dict(action.options))
    ]


def _disconnect(state: AppState, action: intents.Disconnect) -> Reduction:
    connection = state.connection
    if connection is None:
        return _reject(state, action, ErrorKind.NOT_CONNECTED, ERROR_NOT_CONNECTED)
    if not is_valid_transition(connection.state, ConnectionState.DISCONNECTING):
        return state, []
    state = replace(
        state, connection=replace(connection, state=ConnectionState.DISCONNECTING)
    )
    return state, [cmd.DisconnectDevice(CENTRAL_SESSION_ID, connection.device_id)]


def _discover_services(state: AppState, action: intents.DiscoverServices) -> Reduction:
    if not state.is_connected:
        return _reject(state, action, ErrorKind.NOT_CONNECTED, ERROR_NOT_CONNECTED)
    if state.service_discovery.is_in_progress:
        return _reject(
            state, action, ErrorKind.DISCOVERY_IN_PROGRESS, ERROR_DISCOVERY_IN_PROGRESS
        )
    state = replace(state, service_discovery=ServiceDiscoveryState.in_progress())
    return state, [cmd.RequestServiceDiscovery(PERIPHERAL_SESSION_ID, action.service_filter)]


def _start_advertising(state: AppState, action: intents.StartAdvertising) -> Reduction:
    if not state.peripheral_manager_state.is_ready:
        return _reject(
            state,
            action,
            ErrorKind.RADIO_NOT_READY,
            ERROR_RADIO_NOT_READY.format(state.peripheral_manager_state.value),
        )
    if state.is_advertising:
        return state, []
    return replace(state, is_advertising=True), [
        cmd.BeginAdvertising(
            PERIPHERAL_MANAGER_SESSION_ID, action.name, tuple(action.service_uuids)
        )
    ]


def _stop_advertising(state: AppState, action: intents.StopAdvertising) -> Reduction:
    if not state.is_advertising:
        return state, []
    return replace(state, is_advertising=False), [
        cmd.EndAdvertising(PERIPHERAL_MANAGER_SESSION_ID)
    ]


# Central events


def _radio_state_changed(state: AppState, event: ev.RadioStateChanged) -> Reduction:
    if event.session_id != CENTRAL_SESSION_ID:
        return state, []
    state = replace(state, radio_state=event.state)
    if event.state.is_ready:
        return state, []
    # Radio loss cancels the scan and any connection
    commands: Commands = []
    state = replace(state, is_scanning=False)
    if state.connection is not None:
        commands.append(cmd.DestroyPeripheralSession(PERIPHERAL_SESSION_ID))
        commands.append(
            cmd.DisconnectDevice(CENTRAL_SESSION_ID, state.connection.device_id)
        )
        state = _drop_connection(state)
    return state, commands


def _device_discovered(state: AppState, event: ev.DeviceDiscovered) -> Reduction:
    if event.session_id != CENTRAL_SESSION_ID or not state.is_scanning:
        return state, []
    discovered = dict(state.discovered)
    discovered[event.device.id] = event.device
    return replace(state, discovered=discovered), []


def _scan_failed(state: AppState, event: ev.ScanFailed) -> Reduction:
    if event.session_id != CENTRAL_SESSION_ID:
        return state, []
    return replace(state, is_scanning=False, last_error=event.error), []


def _connected(state: AppState, event: ev.Connected) -> Reduction:
    if event.session_id != CENTRAL_SESSION_ID:
        return state, []
    connection = state.connection
    if connection is None or connection.device_id != event.device_id:
        # Nobody wants this connection any more
        return state, [cmd.DisconnectDevice(CENTRAL_SESSION_ID, event.device_id)]
    if not is_valid_transition(connection.state, ConnectionState.CONNECTED):
        return state, []
    state = replace(
        state,
        connection=replace(connection, state=ConnectionState.CONNECTED),
        service_discovery=ServiceDiscoveryState(),
    )
    return state, [
        cmd.CreatePeripheralSession(
            PERIPHERAL_SESSION_ID, CENTRAL_SESSION_ID, event.device_id
        )
    ]


def _disconnected(state: AppState, event: ev.Disconnected) -> Reduction:
    if event.session_id != CENTRAL_SESSION_ID:
        return state, []
    connection = state.connection
    if connection is None or connection.device_id != event.device_id:
        return state, []
    return _drop_connection(state, event.error), [
        cmd.DestroyPeripheralSession(PERIPHERAL_SESSION_ID)
    ]


# Peripheral events


def _services_discovered(state: AppState, event: ev.ServicesDiscovered) -> Reduction:
    if not _is_current_discovery(state, event.session_id, event.device_id):
        return state, []
    return replace(
        state, service_discovery=ServiceDiscoveryState.completed(event.services)
    ), []


def _services_discovery_failed(
    state: AppState, event: ev.ServicesDiscoveryFailed
) -> Reduction:
    if not _is_current_discovery(state, event.session_id, event.device_id):
        return state, []
    return replace(
        state,
        service_discovery=ServiceDiscoveryState.failed(event.error),
        last_error=event.error,
    ), []


def _is_current_discovery(state: AppState, session_id, device_id) -> bool:
    return (
        session_id == PERIPHERAL_SESSION_ID
        and state.service_discovery.is_in_progress
        and state.connection is not None
        and state.connection.device_id == device_id
    )


# Peripheral manager events


def _peripheral_manager_state_changed(
    state: AppState, event: ev.PeripheralManagerStateChanged
) -> Reduction:
    if event.session_id != PERIPHERAL_MANAGER_SESSION_ID:
        return state, []
    state = replace(state, peripheral_manager_state=event.state)
    if not event.state.is_ready:
        state = replace(state, is_advertising=False, connected_centrals=frozenset())
    return state, []


def _advertising_started(state: AppState, event: ev.AdvertisingStarted) -> Reduction:
    if event.session_id != PERIPHERAL_MANAGER_SESSION_ID or event.error is None:
        return state, []
    return replace(state, is_advertising=False, last_error=event.error), []


def _peripheral_connected(state: AppState, event: ev.PeripheralConnected) -> Reduction:
    if event.session_id != PERIPHERAL_MANAGER_SESSION_ID:
        return state, []
    return replace(
        state, connected_centrals=state.connected_centrals | {event.central_id}
    ), []


def _peripheral_disconnected(
    state: AppState, event: ev.PeripheralDisconnected
) -> Reduction:
    if event.session_id != PERIPHERAL_MANAGER_SESSION_ID:
        return state, []
    return replace(
        state, connected_centrals=state.connected_centrals - {event.central_id}
    ), []


def _services_discovered_by_remote(
    state: AppState, event: ev.ServicesDiscoveredByRemote
) -> Reduction:
    if event.session_id != PERIPHERAL_MANAGER_SESSION_ID:
        return state, []
    remote = dict(state.remote_discoveries)
    remote[event.central_id] = event.error
    return replace(state, remote_discoveries=remote), []


# Rejections raised by sessions


def _operation_rejected(state: AppState, event: ev.OperationRejected) -> Reduction:
    state = replace(state, last_error=event.error)
    operation = event.operation
    commands: Commands = []
    if operation is Operation.START_SCAN and event.session_id == CENTRAL_SESSION_ID:
        state = replace(state, is_scanning=False)
    elif operation is Operation.CONNECT and event.session_id == CENTRAL_SESSION_ID:
        if state.is_connecting:
            state = replace(state, connection=None)
    elif operation is Operation.DISCONNECT and event.session_id == CENTRAL_SESSION_ID:
        state = _drop_connection(state)
    elif operation is Operation.DISCOVER_SERVICES:
        if event.error.kind is not ErrorKind.DISCOVERY_IN_PROGRESS:
            if state.service_discovery.is_in_progress:
                state = replace(
                    state, service_discovery=ServiceDiscoveryState.failed(event.error)
                )
    elif operation is Operation.START_ADVERTISING:
        state = replace(state, is_advertising=False)
    elif operation is Operation.CREATE and event.session_id == PERIPHERAL_SESSION_ID:
        if state.connection is not None:
            commands.append(
                cmd.DisconnectDevice(CENTRAL_SESSION_ID, state.connection.device_id)
            )
        state = _drop_connection(state)
    return state, commands


_INTENT_HANDLERS: Dict[type, Callable[[AppState, Any], Reduction]] = {
    intents.Appear: _appear,
    intents.Disappear: _disappear,
    intents.StartScan: _start_scan,
    intents.StopScan: _stop_scan,
    intents.Connect: _connect,
    intents.Disconnect: _disconnect,
    intents.DiscoverServices: _discover_services,
    intents.StartAdvertising: _start_advertising,
    intents.StopAdvertising: _stop_advertising,
}

# Session events are only applied while the sessions exist
_EVENT_HANDLERS: Dict[type, Callable[[AppState, Any], Reduction]] = {
    ev.RadioStateChanged: _radio_state_changed,
    ev.DeviceDiscovered: _device_discovered,
    ev.ScanFailed: _scan_failed,
    ev.Connected: _connected,
    ev.Disconnected: _disconnected,
    ev.ServicesDiscovered: _services_discovered,
    ev.ServicesDiscoveryFailed: _services_discovery_failed,
    ev.PeripheralManagerStateChanged: _peripheral_manager_state_changed,
    ev.AdvertisingStarted: _advertising_started,
    ev.PeripheralConnected: _peripheral_connected,
    ev.PeripheralDisconnected: _peripheral_disconnected,
    ev.ServicesDiscoveredByRemote: _services_discovered_by_remote,
    ev.OperationRejected: _operation_rejected,
}


def reduce(state: AppState, action) -> Reduction:
    """
    Apply one intent or session event to `state`.

    Session events that arrive while the application is inactive (a stream
    still draining after `Disappear`) leave the state unchanged.

    Parameters:
        state (AppState): Current application state (never mutated).
        action: An intent from `blesession.intents` or an event from `blesession.events`.

    Returns:
        Tuple[AppState, List]: The next state and the commands to execute, in order.

    Raises:
        TypeError: If `action` is not a known intent or event type.
    """
    handler = _INTENT_HANDLERS.get(type(action))
    if handler is not None:
        return handler(state, action)
    handler = _EVENT_HANDLERS.get(type(action))
    if handler is None:
        raise TypeError(f"Unsupported action: {action!r}")
    if not state.is_active:
        return state, []
    return handler(state, action)
