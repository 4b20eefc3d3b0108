"""Events raised by sessions in response to hardware callbacks."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Hashable, Optional, Tuple

from blesession.errors import SessionError
from blesession.models import DiscoveredDevice
from blesession.state import RadioState

__all__ = [
    "AdvertisingStarted",
    "Connected",
    "DeviceDiscovered",
    "Disconnected",
    "Operation",
    "OperationRejected",
    "PeripheralConnected",
    "PeripheralDisconnected",
    "PeripheralManagerStateChanged",
    "RadioStateChanged",
    "ScanFailed",
    "ServicesDiscovered",
    "ServicesDiscoveredByRemote",
    "ServicesDiscoveryFailed",
]


class Operation(Enum):
    """Session operations that can be rejected."""

    CREATE = "create"
    START_SCAN = "start_scan"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    DISCOVER_SERVICES = "discover_services"
    START_ADVERTISING = "start_advertising"


@dataclass(frozen=True)
class OperationRejected:
    """A session refused an operation; raised for every role."""

    session_id: Hashable
    operation: Operation
    error: SessionError


# Central role


@dataclass(frozen=True)
class RadioStateChanged:
    session_id: Hashable
    state: RadioState


@dataclass(frozen=True)
class DeviceDiscovered:
    session_id: Hashable
    device: DiscoveredDevice


@dataclass(frozen=True)
class Connected:
    session_id: Hashable
    device_id: Hashable


@dataclass(frozen=True)
class Disconnected:
    """Connection ended, or a connect attempt failed when ``error`` is set."""

    session_id: Hashable
    device_id: Hashable
    error: Optional[SessionError] = None


@dataclass(frozen=True)
class ScanFailed:
    session_id: Hashable
    error: SessionError


# Peripheral role


@dataclass(frozen=True)
class ServicesDiscovered:
    session_id: Hashable
    device_id: Hashable
    services: Tuple[Any, ...]


@dataclass(frozen=True)
class ServicesDiscoveryFailed:
    session_id: Hashable
    device_id: Hashable
    error: SessionError


# Peripheral manager role


@dataclass(frozen=True)
class PeripheralManagerStateChanged:
    session_id: Hashable
    state: RadioState


@dataclass(frozen=True)
class AdvertisingStarted:
    session_id: Hashable
    error: Optional[SessionError] = None


@dataclass(frozen=True)
class PeripheralConnected:
    session_id: Hashable
    central_id: Hashable


@dataclass(frozen=True)
class PeripheralDisconnected:
    session_id: Hashable
    central_id: Hashable


@dataclass(frozen=True)
class ServicesDiscoveredByRemote:
    """A remote central finished discovering this device's services."""

    session_id: Hashable
    central_id: Hashable
    error: Optional[SessionError] = None
