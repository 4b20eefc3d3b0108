"""Commands returned by the reducer and executed against the sessions."""

from dataclasses import dataclass, field
from typing import Any, Hashable, Mapping, Optional, Sequence, Tuple

from blesession.errors import SessionError

__all__ = [
    "BeginAdvertising",
    "BeginScan",
    "ConnectDevice",
    "CreateCentralSession",
    "CreatePeripheralManagerSession",
    "CreatePeripheralSession",
    "DestroyCentralSession",
    "DestroyPeripheralManagerSession",
    "DestroyPeripheralSession",
    "DisconnectDevice",
    "EndAdvertising",
    "EndScan",
    "RejectIntent",
    "RequestServiceDiscovery",
]


@dataclass(frozen=True)
class CreateCentralSession:
    session_id: Hashable


@dataclass(frozen=True)
class DestroyCentralSession:
    session_id: Hashable


@dataclass(frozen=True)
class BeginScan:
    session_id: Hashable
    service_filter: Optional[Sequence[str]] = None


@dataclass(frozen=True)
class EndScan:
    session_id: Hashable


@dataclass(frozen=True)
class ConnectDevice:
    session_id: Hashable
    device_id: Hashable
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DisconnectDevice:
    session_id: Hashable
    device_id: Hashable


@dataclass(frozen=True)
class CreatePeripheralSession:
    """Bind a peripheral session to a device connected through ``central_id``."""

    session_id: Hashable
    central_id: Hashable
    device_id: Hashable


@dataclass(frozen=True)
class DestroyPeripheralSession:
    session_id: Hashable


@dataclass(frozen=True)
class RequestServiceDiscovery:
    session_id: Hashable
    service_filter: Optional[Sequence[str]] = None


@dataclass(frozen=True)
class CreatePeripheralManagerSession:
    session_id: Hashable


@dataclass(frozen=True)
class DestroyPeripheralManagerSession:
    session_id: Hashable


@dataclass(frozen=True)
class BeginAdvertising:
    session_id: Hashable
    name: str
    service_uuids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class EndAdvertising:
    session_id: Hashable


@dataclass(frozen=True)
class RejectIntent:
    """An intent was refused against current state; nothing else changes."""

    error: SessionError
    intent: Any
