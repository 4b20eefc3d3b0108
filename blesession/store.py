"""Runtime that routes intents and session events through the reducer.

Every intent and every session event is appended to one queue and consumed
by a single reducer thread, so application state is only ever touched from
that thread. Commands returned by the reducer are executed on the same
thread, in order; session streams are forwarded into the queue by one pump
thread per stream, which keeps per-session event order intact.
"""

import time
from dataclasses import dataclass
from queue import Queue
from threading import RLock
from typing import Any, Callable, Dict, Optional

from pubsub import pub

from blesession import commands as cmd
from blesession.adapter import CentralAdapterFactory, PeripheralManagerAdapterFactory
from blesession.central import CentralSession
from blesession.constants import BLEConfig, logger
from blesession.coordination import ThreadCoordinator
from blesession.errors import BLEErrorHandler
from blesession.intents import Disappear
from blesession.peripheral import PeripheralSession
from blesession.peripheral_manager import PeripheralManagerSession
from blesession.reducer import AppState, reduce
from blesession.registry import SessionRegistry
from blesession.stream import EventStream

__all__ = [
    "Environment",
    "Store",
    "TOPIC_INTENT_REJECTED",
    "TOPIC_STATE_CHANGED",
]

TOPIC_STATE_CHANGED = "blesession.state.changed"
TOPIC_INTENT_REJECTED = "blesession.intent.rejected"

_STOP = object()


@dataclass
class Environment:
    """The sessions commands are executed against; all share one registry."""

    central: CentralSession
    peripheral: PeripheralSession
    peripheral_manager: PeripheralManagerSession

    @classmethod
    def live(
        cls,
        central_factory: CentralAdapterFactory,
        peripheral_manager_factory: PeripheralManagerAdapterFactory,
        registry: Optional[SessionRegistry] = None,
    ) -> "Environment":
        registry = registry or SessionRegistry()
        return cls(
            central=CentralSession(registry, central_factory),
            peripheral=PeripheralSession(registry),
            peripheral_manager=PeripheralManagerSession(
                registry, peripheral_manager_factory
            ),
        )


class Store:
    """
    Serializes events and intents into the reducer and executes its commands.

    Use `send` to submit intents from any thread and read `state` for the
    latest snapshot. State changes and rejected intents are published with
    pypubsub on `TOPIC_STATE_CHANGED` and `TOPIC_INTENT_REJECTED`.
    """

    def __init__(
        self,
        environment: Environment,
        initial_state: Optional[AppState] = None,
        reducer: Callable[[AppState, Any], Any] = reduce,
    ):
        self.environment = environment
        self.reducer = reducer
        self.error_handler = BLEErrorHandler()
        self._state = initial_state or AppState()
        self._state_lock = RLock()
        self._actions: "Queue[Any]" = Queue()
        self._coordinator = ThreadCoordinator()
        self._reducer_thread = None
        self._executors: Dict[type, Callable[[Any], None]] = {
            cmd.CreateCentralSession: self._create_central,
            cmd.DestroyCentralSession: lambda c: self.environment.central.destroy(c.session_id),
            cmd.BeginScan: lambda c: self.environment.central.start_scan(
                c.session_id, c.service_filter
            ),
            cmd.EndScan: lambda c: self.environment.central.stop_scan(c.session_id),
            cmd.ConnectDevice: lambda c: self.environment.central.connect(
                c.session_id, c.device_id, c.options
            ),
            cmd.DisconnectDevice: lambda c: self.environment.central.disconnect(
                c.session_id, c.device_id
            ),
            cmd.CreatePeripheralSession: self._create_peripheral,
            cmd.DestroyPeripheralSession: lambda c: self.environment.peripheral.destroy(
                c.session_id
            ),
            cmd.RequestServiceDiscovery: lambda c: self.environment.peripheral.discover_services(
                c.session_id, c.service_filter
            ),
            cmd.CreatePeripheralManagerSession: self._create_peripheral_manager,
            cmd.DestroyPeripheralManagerSession: lambda c: self.environment.peripheral_manager.destroy(
                c.session_id
            ),
            cmd.BeginAdvertising: lambda c: self.environment.peripheral_manager.start_advertising(
                c.session_id, c.name, c.service_uuids
            ),
            cmd.EndAdvertising: lambda c: self.environment.peripheral_manager.stop_advertising(
                c.session_id
            ),
            cmd.RejectIntent: self._publish_rejection,
        }

    @property
    def state(self) -> AppState:
        """Latest immutable state snapshot."""
        with self._state_lock:
            return self._state

    @property
    def is_running(self) -> bool:
        thread = self._reducer_thread
        return thread is not None and thread.is_alive()

    def start(self) -> "Store":
        """Start the reducer thread. Idempotent."""
        if self.is_running:
            return self
        self._coordinator.create_event("stopped")
        thread = self._coordinator.create_thread(
            target=self._run, name="BLESessionReducer", daemon=True
        )
        self._reducer_thread = thread
        self._coordinator.start_thread(thread)
        return self

    def send(self, action) -> None:
        """Submit an intent (or a synthetic event) for ordered processing."""
        self._actions.put(action)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued action has been reduced and its commands executed.

        Events raised later by hardware callbacks are not waited for.

        Returns:
            bool: False if `timeout` elapsed first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._actions.all_tasks_done:
            while self._actions.unfinished_tasks:
                if deadline is None:
                    self._actions.all_tasks_done.wait()
                    continue
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._actions.all_tasks_done.wait(remaining)
        return True

    def close(self, timeout: float = BLEConfig.EVENT_THREAD_JOIN_TIMEOUT) -> None:
        """
        Destroy every live session, stop the reducer thread and join the pumps.

        Sessions are destroyed by reducing a `Disappear` intent so teardown goes
        through the same ordered path as everything else.
        """
        if self.is_running:
            self.send(Disappear())
            self._actions.put(_STOP)
            self._coordinator.wait_for_event("stopped", timeout=timeout)
        self._coordinator.cleanup(timeout=timeout)

    def __enter__(self) -> "Store":
        return self.start()

    def __exit__(self, _type, _value, _traceback):
        self.close()

    def _run(self) -> None:
        try:
            while True:
                action = self._actions.get()
                try:
                    if action is _STOP:
                        return
                    self.error_handler.safe_execute(
                        lambda: self._process(action),
                        error_msg=f"Error processing {action!r}",
                    )
                finally:
                    self._actions.task_done()
        finally:
            self._coordinator.set_event("stopped")

    def _process(self, action) -> None:
        logger.debug("Reducing %r", action)
        with self._state_lock:
            previous = self._state
        reduction = self.error_handler.safe_execute(
            lambda: self.reducer(previous, action),
            error_msg=f"Reducer failed on {action!r}",
        )
        if reduction is None:
            return
        state, commands = reduction
        with self._state_lock:
            self._state = state
        for command in commands:
            self.error_handler.safe_execute(
                lambda c=command: self._execute(c),
                error_msg=f"Error executing {command!r}",
            )
        if state is not previous:
            self.error_handler.safe_execute(
                lambda: pub.sendMessage(TOPIC_STATE_CHANGED, state=state, store=self),
                error_msg="Error publishing state change",
            )

    def _execute(self, command) -> None:
        executor = self._executors.get(type(command))
        if executor is None:
            logger.warning("No executor for command %r", command)
            return
        logger.debug("Executing %r", command)
        executor(command)

    def _create_central(self, command: cmd.CreateCentralSession) -> None:
        self._pump(self.environment.central.create(command.session_id))

    def _create_peripheral(self, command: cmd.CreatePeripheralSession) -> None:
        handle = self.environment.central.peripheral_handle(
            command.central_id, command.device_id
        )
        self._pump(
            self.environment.peripheral.create(
                command.session_id, command.device_id, handle
            )
        )

    def _create_peripheral_manager(
        self, command: cmd.CreatePeripheralManagerSession
    ) -> None:
        self._pump(self.environment.peripheral_manager.create(command.session_id))

    def _publish_rejection(self, command: cmd.RejectIntent) -> None:
        logger.warning("Intent %r rejected: %s", command.intent, command.error)
        pub.sendMessage(
            TOPIC_INTENT_REJECTED,
            error=command.error,
            intent=command.intent,
            store=self,
        )

    def _pump(self, stream: EventStream) -> None:
        thread = self._coordinator.create_thread(
            target=self._forward,
            args=(stream,),
            name=f"BLESessionPump[{stream.name}]",
            daemon=True,
        )
        self._coordinator.start_thread(thread)

    def _forward(self, stream: EventStream) -> None:
        for event in stream:
            self._actions.put(event)
        logger.debug("Stream %s finished", stream.name)
