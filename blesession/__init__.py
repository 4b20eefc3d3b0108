"""Reducer-driven BLE session management."""

from blesession.constants import (
    CENTRAL_SESSION_ID,
    DISCONNECT_TIMEOUT_SECONDS,
    EVENT_THREAD_JOIN_TIMEOUT,
    PERIPHERAL_MANAGER_SESSION_ID,
    PERIPHERAL_SESSION_ID,
    BLEConfig,
    logger,
)
from blesession.state import *
from blesession.errors import *
from blesession.models import *
from blesession.events import *
from blesession.intents import *
from blesession.commands import *
from blesession.stream import *
from blesession.registry import *
from blesession.adapter import *
from blesession.central import *
from blesession.peripheral import *
from blesession.peripheral_manager import *
from blesession.reducer import *
from blesession.coordination import *
from blesession.store import *

__all__ = [
    # Runtime
    "AppState",
    "Environment",
    "Store",
    "reduce",
    "TOPIC_STATE_CHANGED",
    "TOPIC_INTENT_REJECTED",
    # Sessions
    "SessionRegistry",
    "SessionKey",
    "CentralSession",
    "PeripheralSession",
    "PeripheralManagerSession",
    "EventStream",
    "PendingOperation",
    "ThreadCoordinator",
    # Adapter interfaces
    "CentralAdapter",
    "CentralDelegate",
    "PeripheralAdapter",
    "PeripheralDelegate",
    "PeripheralManagerAdapter",
    "PeripheralManagerDelegate",
    # Values
    "RadioState",
    "ConnectionState",
    "DiscoveryStatus",
    "CentralPhase",
    "DiscoveredDevice",
    "Connection",
    "ServiceDiscoveryState",
    "ErrorKind",
    "SessionError",
    "BLESessionError",
    "BLEErrorHandler",
    "Operation",
    # Intents
    "Appear",
    "Disappear",
    "StartScan",
    "StopScan",
    "Connect",
    "Disconnect",
    "DiscoverServices",
    "StartAdvertising",
    "StopAdvertising",
    # Constants/helpers
    "BLEConfig",
    "CENTRAL_SESSION_ID",
    "PERIPHERAL_SESSION_ID",
    "PERIPHERAL_MANAGER_SESSION_ID",
    "DISCONNECT_TIMEOUT_SECONDS",
    "EVENT_THREAD_JOIN_TIMEOUT",
    "logger",
]
