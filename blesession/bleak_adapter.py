"""Central-role adapter backed by bleak."""

import asyncio
from concurrent.futures import TimeoutError as FutureTimeoutError
from threading import RLock, Thread
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Tuple

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakError

from blesession.adapter import (
    CentralAdapter,
    CentralDelegate,
    PeripheralAdapter,
    PeripheralDelegate,
)
from blesession.constants import ERROR_ASYNC_TIMEOUT, BLEConfig, logger
from blesession.errors import BLEErrorHandler, BLESessionError
from blesession.state import RadioState

__all__ = ["BleakCentralAdapter", "BleakPeripheralAdapter", "EventLoopThread"]


class EventLoopThread:
    """
    A private asyncio event loop running in a dedicated daemon thread.

    Gives synchronous callers a way to schedule bleak coroutines
    (`async_run`) or block on them with a timeout (`async_await`).
    """

    def __init__(self, name: str = "BleakLoop"):
        self.error_handler = BLEErrorHandler()
        self._eventLoop = asyncio.new_event_loop()
        self._eventThread = Thread(target=self._run_event_loop, name=name, daemon=True)
        try:
            self._eventThread.start()
        except RuntimeError:
            self._eventLoop.close()
            raise

    @property
    def is_running(self) -> bool:
        return self._eventThread.is_alive()

    def async_run(self, coro):
        """
        Schedule a coroutine on the internal event loop.

        Returns:
            concurrent.futures.Future: Future for the coroutine's eventual result.
        """
        return asyncio.run_coroutine_threadsafe(coro, self._eventLoop)

    def async_await(self, coro, timeout: Optional[float] = None):
        """
        Run `coro` on the internal loop and wait for its result.

        Raises:
            BLESessionError: If the wait times out or the loop is gone.
        """
        future = self.async_run(coro)
        try:
            return future.result(timeout)
        except (FutureTimeoutError, RuntimeError) as e:
            future.cancel()
            raise BLESessionError(ERROR_ASYNC_TIMEOUT) from e

    def close(self, timeout: float = BLEConfig.EVENT_THREAD_JOIN_TIMEOUT) -> None:
        """Stop the loop and join its thread."""
        if not self.is_running:
            return
        self.async_run(self._stop_event_loop())
        self._eventThread.join(timeout=timeout)
        if self._eventThread.is_alive():
            logger.warning("Bleak event thread did not exit within %.1fs", timeout)

    def _run_event_loop(self):
        self.error_handler.safe_execute(
            self._eventLoop.run_forever, error_msg="Error in event loop"
        )
        self._eventLoop.close()

    async def _stop_event_loop(self):
        self._eventLoop.stop()


def advertisement_payload(adv) -> Dict[str, Any]:
    """Flatten bleak `AdvertisementData` into a plain mapping."""
    return {
        "local_name": adv.local_name,
        "manufacturer_data": dict(adv.manufacturer_data or {}),
        "service_data": dict(adv.service_data or {}),
        "service_uuids": list(adv.service_uuids or []),
        "tx_power": adv.tx_power,
    }


class BleakPeripheralAdapter(PeripheralAdapter):
    """Service discovery on one device connected through `BleakCentralAdapter`."""

    def __init__(self, loop: EventLoopThread, device_id: Hashable, client):
        self._loop = loop
        self._device_id = device_id
        self._client = client
        self._lock = RLock()
        self._delegate: Optional[PeripheralDelegate] = None
        self._services: Optional[Tuple[Any, ...]] = None

    @property
    def device_id(self) -> Hashable:
        return self._device_id

    def set_delegate(self, delegate: Optional[PeripheralDelegate]) -> None:
        with self._lock:
            self._delegate = delegate

    def discover_services(self, service_filter: Optional[Iterable[str]] = None) -> None:
        wanted = [uuid.lower() for uuid in service_filter] if service_filter else None
        self._loop.async_run(self._discover(wanted))

    def services(self) -> Optional[Sequence[Any]]:
        with self._lock:
            return self._services

    async def _discover(self, wanted: Optional[List[str]]) -> None:
        try:
            # bleak resolves the GATT table as part of connect()
            collection = self._client.services
            found = tuple(
                service
                for service in collection
                if wanted is None or str(service.uuid).lower() in wanted
            )
        except Exception as e:  # noqa: BLE001 - reported to the delegate
            logger.debug("Service discovery on %s failed: %s", self._device_id, e)
            self._notify(None, e)
            return
        with self._lock:
            self._services = found
        self._notify(found, None)

    def _notify(self, services, error) -> None:
        with self._lock:
            delegate = self._delegate
        if delegate is None:
            logger.debug("Discarding discovery result for %s; no delegate", self._device_id)
            return
        delegate.services_discovered(services, error)


class BleakCentralAdapter(CentralAdapter):
    """
    `CentralAdapter` implementation running bleak on a private event loop.

    Device identifiers are the addresses bleak reports. Power state is
    determined by briefly starting a scanner when the adapter is created,
    since bleak does not publish power notifications; call
    `refresh_power_state` to probe again.
    """

    def __init__(
        self,
        delegate: CentralDelegate,
        *,
        probe_power: bool = True,
        **scanner_kwargs,
    ):
        """
        Create the adapter and start its event loop thread.

        Parameters:
            delegate (CentralDelegate): Receives every callback, on the loop thread.
            probe_power (bool): Schedule an initial power probe.
            **scanner_kwargs: Forwarded to every `BleakScanner` (e.g. ``adapter="hci1"``).
        """
        self.delegate = delegate
        self.error_handler = BLEErrorHandler()
        self._scanner_kwargs = scanner_kwargs
        self._lock = RLock()
        self._power_state = RadioState.UNKNOWN
        self._scanner = None
        self._devices: Dict[Hashable, Any] = {}
        self._clients: Dict[Hashable, Any] = {}
        self._connecting: Dict[Hashable, "asyncio.Task[Any]"] = {}
        self._peripherals: Dict[Hashable, BleakPeripheralAdapter] = {}
        self._closed = False
        self._loop = EventLoopThread(name="BleakCentral")
        if probe_power:
            self.refresh_power_state()

    def power_state(self) -> RadioState:
        with self._lock:
            return self._power_state

    def refresh_power_state(self):
        """Schedule a power probe; the delegate hears about any change."""
        return self._loop.async_run(self._probe_power())

    def start_scan(self, service_filter: Optional[Iterable[str]] = None) -> None:
        uuids = list(service_filter) if service_filter else None
        self._loop.async_run(self._start_scan(uuids))

    def stop_scan(self) -> None:
        self._loop.async_run(self._stop_scan())

    def connect(
        self, device_id: Hashable, options: Optional[Mapping[str, Any]] = None
    ) -> None:
        self._loop.async_run(self._begin_connect(device_id, dict(options or {})))

    def disconnect(self, device_id: Hashable) -> None:
        self._loop.async_run(self._disconnect(device_id))

    def peripheral(self, device_id: Hashable) -> Optional[PeripheralAdapter]:
        with self._lock:
            client = self._clients.get(device_id)
            if client is None:
                return None
            handle = self._peripherals.get(device_id)
            if handle is None:
                handle = BleakPeripheralAdapter(self._loop, device_id, client)
                self._peripherals[device_id] = handle
            return handle

    def close(self) -> None:
        """Stop scanning, drop every connection and stop the event loop."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self.error_handler.safe_cleanup(
            lambda: self._loop.async_await(
                self._shutdown(), timeout=BLEConfig.DISCONNECT_TIMEOUT_SECONDS
            ),
            "bleak shutdown",
        )
        self._loop.close()

    def __enter__(self):
        return self

    def __exit__(self, _type, _value, _traceback):
        self.close()

    # Coroutines below run on the adapter's event loop

    def _set_power_state(self, state: RadioState) -> None:
        with self._lock:
            if state is self._power_state:
                return
            self._power_state = state
        logger.debug("Bleak radio power state: %s", state.value)
        self.delegate.power_state_changed(state)

    async def _probe_power(self) -> RadioState:
        scanner = BleakScanner(**self._scanner_kwargs)
        try:
            await asyncio.wait_for(scanner.start(), timeout=BLEConfig.POWER_PROBE_TIMEOUT)
            await scanner.stop()
        except asyncio.TimeoutError:
            logger.debug("Power probe timed out; radio state unknown")
            return self.power_state()
        except BleakError as e:
            logger.debug("Power probe failed: %s", e)
            state = RadioState.POWERED_OFF
        except Exception as e:  # noqa: BLE001 - any other failure means no usable stack
            logger.debug("Power probe failed unexpectedly: %s", e)
            state = RadioState.UNSUPPORTED
        else:
            state = RadioState.POWERED_ON
        self._set_power_state(state)
        return state

    async def _start_scan(self, service_uuids: Optional[List[str]]) -> None:
        if self._scanner is not None:
            return
        scanner = BleakScanner(
            detection_callback=self._on_advertisement,
            service_uuids=service_uuids,
            **self._scanner_kwargs,
        )
        try:
            await scanner.start()
        except Exception as e:  # noqa: BLE001 - reported to the delegate
            logger.warning("Failed to start bleak scanner: %s", e)
            self.delegate.scan_failed(e)
            return
        self._scanner = scanner

    async def _stop_scan(self) -> None:
        scanner, self._scanner = self._scanner, None
        if scanner is None:
            return
        try:
            await scanner.stop()
        except Exception as e:  # noqa: BLE001 - scan is over either way
            logger.debug("Error stopping bleak scanner: %s", e)

    def _on_advertisement(self, device, adv) -> None:
        if self._scanner is None:
            return
        with self._lock:
            self._devices[device.address] = device
        self.delegate.advertisement_received(
            device.address,
            adv.local_name or device.name,
            advertisement_payload(adv),
            adv.rssi,
        )

    async def _begin_connect(self, device_id: Hashable, options: Dict[str, Any]) -> None:
        task = asyncio.ensure_future(self._connect(device_id, options))
        self._connecting[device_id] = task

    async def _connect(self, device_id: Hashable, options: Dict[str, Any]) -> None:
        timeout = options.pop("timeout", BLEConfig.CONNECTION_TIMEOUT)
        with self._lock:
            target = self._devices.get(device_id, device_id)
        client = BleakClient(
            target,
            disconnected_callback=lambda _client: self._on_disconnected(device_id),
            **options,
        )
        try:
            await client.connect(timeout=timeout)
        except asyncio.CancelledError:
            logger.debug("Connect to %s cancelled", device_id)
            self._connecting.pop(device_id, None)
            self.delegate.disconnected(device_id)
            return
        except Exception as e:  # noqa: BLE001 - reported to the delegate
            logger.debug("Connect to %s failed: %s", device_id, e)
            self._connecting.pop(device_id, None)
            self.delegate.connect_failed(device_id, e)
            return
        self._connecting.pop(device_id, None)
        with self._lock:
            self._clients[device_id] = client
        self.delegate.connected(device_id)

    async def _disconnect(self, device_id: Hashable) -> None:
        task = self._connecting.pop(device_id, None)
        if task is not None:
            task.cancel()
            return
        with self._lock:
            client = self._clients.get(device_id)
        if client is None:
            return
        try:
            await asyncio.wait_for(
                client.disconnect(), timeout=BLEConfig.DISCONNECT_TIMEOUT_SECONDS
            )
        except Exception as e:  # noqa: BLE001 - reported to the delegate
            logger.debug("Disconnect from %s failed: %s", device_id, e)
            self._forget(device_id)
            self.delegate.disconnected(device_id, e)

    def _on_disconnected(self, device_id: Hashable) -> None:
        if self._forget(device_id):
            self.delegate.disconnected(device_id)

    def _forget(self, device_id: Hashable) -> bool:
        with self._lock:
            self._peripherals.pop(device_id, None)
            return self._clients.pop(device_id, None) is not None

    async def _shutdown(self) -> None:
        await self._stop_scan()
        for task in list(self._connecting.values()):
            task.cancel()
        self._connecting.clear()
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
            self._peripherals.clear()
        for client in clients:
            try:
                await client.disconnect()
            except Exception as e:  # noqa: BLE001 - shutting down
                logger.debug("Error disconnecting during shutdown: %s", e)
