"""Error taxonomy and error handling utilities for BLE sessions."""

from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from bleak.exc import BleakDBusError, BleakError

from blesession.constants import logger

__all__ = [
    "BLEErrorHandler",
    "BLESessionError",
    "DuplicateSessionError",
    "ErrorKind",
    "SessionError",
]


class ErrorKind(Enum):
    """Kinds of failure a session operation can report."""

    RADIO_NOT_READY = "radio_not_ready"
    UNKNOWN_DEVICE = "unknown_device"
    ALREADY_CONNECTING = "already_connecting"
    NOT_CONNECTED = "not_connected"
    DISCOVERY_IN_PROGRESS = "discovery_in_progress"
    DUPLICATE_SESSION = "duplicate_session"
    HARDWARE_ERROR = "hardware_error"


@dataclass(frozen=True)
class SessionError:
    """A failure reported as a value inside events, commands and state.

    ``cause`` carries the opaque underlying exception for hardware errors and
    is excluded from equality so that two reports of the same failure compare
    equal in tests and state snapshots.
    """

    kind: ErrorKind
    message: str = ""
    cause: Optional[Any] = field(default=None, compare=False)

    @classmethod
    def hardware(cls, cause: Any) -> "SessionError":
        """Wrap an adapter-level failure without interpreting it."""
        return cls(ErrorKind.HARDWARE_ERROR, str(cause), cause)

    def __str__(self) -> str:
        if self.message:
            return f"{self.kind.value}: {self.message}"
        return self.kind.value


class BLESessionError(Exception):
    """Base exception for errors raised inside the session layer."""


class DuplicateSessionError(BLESessionError):
    """Raised by the registry when a session key is already live."""

    def __init__(self, key):
        super().__init__(f"Session {key!r} already exists")
        self.key = key


class BLEErrorHandler:
    """Helper class for consistent error handling around adapter calls.

    Features:
        - Safe execution with fallback return values
        - Consistent error logging and classification
        - Cleanup operations that never raise exceptions
    """

    @staticmethod
    def safe_execute(
        func,
        default_return=None,
        log_error: bool = True,
        error_msg: str = "Error in operation",
        reraise: bool = False,
    ):
        """
        Execute a zero-argument callable and return its result, falling back to a provided default on failure.

        Parameters:
            func (callable): A zero-argument callable to execute.
            default_return: Value to return if execution fails.
            log_error (bool): If True, log caught exceptions.
            error_msg (str): Message prefix used when logging errors.
            reraise (bool): If True, re-raise any caught exception instead of returning default_return.

        Returns:
            The value returned by `func()` on success, or `default_return` if execution failed.
        """
        try:
            return func()
        except (BleakError, BleakDBusError, FutureTimeoutError) as e:
            if log_error:
                logger.debug("%s: %s", error_msg, e)
            if reraise:
                raise
            return default_return
        except Exception:
            if log_error:
                logger.exception("%s", error_msg)
            if reraise:
                raise
            return default_return

    @staticmethod
    def safe_cleanup(func, cleanup_name: str = "cleanup operation"):
        """Execute a cleanup callable, logging and suppressing any exception it raises."""
        try:
            func()
        except Exception as e:  # noqa: BLE001 - cleanup paths must not raise
            logger.debug("Error during %s: %s", cleanup_name, e)
