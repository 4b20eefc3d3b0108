"""Immutable value types shared by sessions, events and application state."""

from dataclasses import dataclass, field
from typing import Any, Hashable, Mapping, Optional, Tuple

from blesession.errors import SessionError
from blesession.state import ConnectionState, DiscoveryStatus

__all__ = [
    "Connection",
    "DiscoveredDevice",
    "ServiceDiscoveryState",
]


@dataclass(frozen=True)
class DiscoveredDevice:
    """Most recent advertisement observed for one device."""

    id: Hashable
    name: Optional[str]
    advertisement: Mapping[str, Any] = field(default_factory=dict)
    rssi: int = 0
    last_seen: float = 0.0


@dataclass(frozen=True)
class Connection:
    """The single device a connect intent was issued for."""

    device_id: Hashable
    state: ConnectionState = ConnectionState.CONNECTING


@dataclass(frozen=True)
class ServiceDiscoveryState:
    """Service discovery progress; ``services`` keeps the order the hardware returned."""

    status: DiscoveryStatus = DiscoveryStatus.NOT_REQUESTED
    services: Tuple[Any, ...] = ()
    error: Optional[SessionError] = None

    @classmethod
    def in_progress(cls) -> "ServiceDiscoveryState":
        return cls(DiscoveryStatus.IN_PROGRESS)

    @classmethod
    def completed(cls, services) -> "ServiceDiscoveryState":
        return cls(DiscoveryStatus.COMPLETED, tuple(services))

    @classmethod
    def failed(cls, error: SessionError) -> "ServiceDiscoveryState":
        return cls(DiscoveryStatus.FAILED, error=error)

    @property
    def is_in_progress(self) -> bool:
        return self.status is DiscoveryStatus.IN_PROGRESS
