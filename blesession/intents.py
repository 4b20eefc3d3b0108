"""User intents submitted by the presentation layer."""

from dataclasses import dataclass, field
from typing import Any, Hashable, Mapping, Optional, Sequence

__all__ = [
    "Appear",
    "Connect",
    "Disappear",
    "Disconnect",
    "DiscoverServices",
    "StartAdvertising",
    "StartScan",
    "StopAdvertising",
    "StopScan",
]


@dataclass(frozen=True)
class Appear:
    """The view became visible; sessions are created."""


@dataclass(frozen=True)
class Disappear:
    """The view went away; every live session is destroyed."""


@dataclass(frozen=True)
class StartScan:
    service_filter: Optional[Sequence[str]] = None


@dataclass(frozen=True)
class StopScan:
    pass


@dataclass(frozen=True)
class Connect:
    device_id: Hashable
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Disconnect:
    pass


@dataclass(frozen=True)
class DiscoverServices:
    service_filter: Optional[Sequence[str]] = None


@dataclass(frozen=True)
class StartAdvertising:
    name: str
    service_uuids: Sequence[str] = ()


@dataclass(frozen=True)
class StopAdvertising:
    pass
