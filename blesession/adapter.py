"""Hardware adapter capability interfaces consumed by the session layer.

Adapters wrap a real radio stack. They never raise out of the start/stop/
connect/discover calls for radio-level failures; outcomes are reported back
through the delegate installed on them, from whatever thread the stack uses.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Hashable, Iterable, Mapping, Optional, Sequence

from blesession.state import RadioState

__all__ = [
    "CentralAdapter",
    "CentralAdapterFactory",
    "CentralDelegate",
    "PeripheralAdapter",
    "PeripheralDelegate",
    "PeripheralManagerAdapter",
    "PeripheralManagerAdapterFactory",
    "PeripheralManagerDelegate",
]


class CentralDelegate(ABC):
    """Callbacks raised by a `CentralAdapter`."""

    @abstractmethod
    def power_state_changed(self, state: RadioState) -> None:
        """The radio power state changed."""

    @abstractmethod
    def advertisement_received(
        self,
        device_id: Hashable,
        name: Optional[str],
        advertisement: Mapping[str, Any],
        rssi: int,
    ) -> None:
        """One advertisement broadcast was observed while scanning."""

    @abstractmethod
    def scan_failed(self, error: Any) -> None:
        """Scanning could not be started or stopped unexpectedly."""

    @abstractmethod
    def connected(self, device_id: Hashable) -> None:
        """A connect request completed."""

    @abstractmethod
    def connect_failed(self, device_id: Hashable, error: Any) -> None:
        """A connect request failed or timed out."""

    @abstractmethod
    def disconnected(self, device_id: Hashable, error: Optional[Any] = None) -> None:
        """An established connection ended."""


class PeripheralDelegate(ABC):
    """Callbacks raised by a `PeripheralAdapter`."""

    @abstractmethod
    def services_discovered(
        self, services: Optional[Sequence[Any]], error: Optional[Any] = None
    ) -> None:
        """A discover request finished with `services` (hardware order) or `error`."""


class PeripheralManagerDelegate(ABC):
    """Callbacks raised by a `PeripheralManagerAdapter`."""

    @abstractmethod
    def power_state_changed(self, state: RadioState) -> None:
        """The radio power state changed."""

    @abstractmethod
    def advertising_started(self, error: Optional[Any] = None) -> None:
        """A start-advertising request completed or failed."""

    @abstractmethod
    def central_connected(self, central_id: Hashable) -> None:
        """A remote central connected to this device."""

    @abstractmethod
    def central_disconnected(self, central_id: Hashable) -> None:
        """A remote central disconnected."""

    @abstractmethod
    def services_discovered_by_remote(
        self, central_id: Hashable, error: Optional[Any] = None
    ) -> None:
        """A remote central finished discovering this device's services."""


class PeripheralAdapter(ABC):
    """Hardware handle for one connected remote device."""

    @property
    @abstractmethod
    def device_id(self) -> Hashable:
        """Identifier of the bound device."""

    @abstractmethod
    def set_delegate(self, delegate: Optional[PeripheralDelegate]) -> None:
        """Install (or detach, with None) the callback sink for this device."""

    @abstractmethod
    def discover_services(self, service_filter: Optional[Iterable[str]] = None) -> None:
        """Request service discovery; the result arrives via the delegate."""

    @abstractmethod
    def services(self) -> Optional[Sequence[Any]]:
        """Services discovered so far, or None."""


class CentralAdapter(ABC):
    """The central role of a radio stack."""

    @abstractmethod
    def power_state(self) -> RadioState:
        """Current radio power state."""

    @abstractmethod
    def start_scan(self, service_filter: Optional[Iterable[str]] = None) -> None:
        """Begin scanning; advertisements arrive via the delegate."""

    @abstractmethod
    def stop_scan(self) -> None:
        """Stop scanning."""

    @abstractmethod
    def connect(
        self, device_id: Hashable, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        """Request a connection; completion arrives via the delegate."""

    @abstractmethod
    def disconnect(self, device_id: Hashable) -> None:
        """Request a disconnect (also cancels a pending connect)."""

    @abstractmethod
    def peripheral(self, device_id: Hashable) -> Optional[PeripheralAdapter]:
        """Return the hardware handle for a connected device, or None."""

    @abstractmethod
    def close(self) -> None:
        """Release every hardware resource held by this adapter."""


class PeripheralManagerAdapter(ABC):
    """The peripheral (advertiser) role of a radio stack."""

    @abstractmethod
    def power_state(self) -> RadioState:
        """Current radio power state."""

    @abstractmethod
    def start_advertising(self, name: str, service_uuids: Sequence[str] = ()) -> None:
        """Begin advertising; completion arrives via the delegate."""

    @abstractmethod
    def stop_advertising(self) -> None:
        """Stop advertising."""

    @abstractmethod
    def close(self) -> None:
        """Release every hardware resource held by this adapter."""


CentralAdapterFactory = Callable[[CentralDelegate], CentralAdapter]
PeripheralManagerAdapterFactory = Callable[
    [PeripheralManagerDelegate], PeripheralManagerAdapter
]
