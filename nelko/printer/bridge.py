"""
Platform-independent interface for getting a Bluetooth printer onto a serial port.

Linux needs an explicit RFCOMM bind (RfcommBridge); Windows creates a COM
port for every paired SPP device on its own (ComPortBridge). get_bridge()
picks one at runtime.
"""

import enum
import logging
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from .exceptions import NoDevicesFoundError

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str], None]

DEFAULT_CHANNEL = 1


@dataclass(frozen=True)
class BluetoothDevice:
    """A paired peer: MAC address on Linux, COM port name on Windows."""

    name: str
    address: str

    @property
    def label(self) -> str:
        return f"{self.name} ({self.address})"


class ConnectionState(enum.Enum):
    IDLE = 'idle'
    RESOLVING = 'resolving'
    ESCALATING = 'escalating'
    BINDING = 'binding'
    POLLING = 'polling'
    READY = 'ready'
    FAILED = 'failed'
    CANCELED = 'canceled'
    CLOSED = 'closed'


TERMINAL_STATES = (ConnectionState.FAILED, ConnectionState.CANCELED, ConnectionState.CLOSED)


class BridgeConnection(ABC):
    """A serial device path bound to one Bluetooth peer."""

    def __init__(self, peer_address: str, status_callback: Optional[StatusCallback] = None,
                 cancel_event: Optional[threading.Event] = None):
        self.peer_address = peer_address
        self.device_path: Optional[str] = None
        self.failure: Optional[Exception] = None
        self._status_callback = status_callback
        self._cancel = cancel_event or threading.Event()
        self._lock = threading.Lock()
        self._state = ConnectionState.IDLE

    @property
    def state(self) -> ConnectionState:
        return self._state

    def _set_state(self, state: ConnectionState):
        logger.debug(f"[Bridge] {self.peer_address}: {self._state.value} -> {state.value}")
        self._state = state

    def _status(self, message: str):
        if self._status_callback:
            self._status_callback(message)

    def cancel(self):
        """Request cancellation of an in-flight establish()."""
        self._cancel.set()

    @abstractmethod
    def establish(self) -> "BridgeConnection":
        """Run the connection sequence; returns self once READY."""
        pass

    @abstractmethod
    def close(self):
        """Release the device path. Safe to call more than once."""
        pass

    @abstractmethod
    def is_device_ready(self) -> bool:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class BluetoothBridge(ABC):
    """Discovery and connection for one family of operating systems."""

    @abstractmethod
    def list_paired_devices(self) -> List[BluetoothDevice]:
        """
        List paired Bluetooth devices.

        Returns:
            Paired devices; empty if the lookup fails
        """
        pass

    @abstractmethod
    def list_candidate_serial_ports(self) -> List[str]:
        """List serial device paths a printer may already be reachable on."""
        pass

    @abstractmethod
    def establish_connection(self, address: str, channel: int = DEFAULT_CHANNEL,
                             status_callback: Optional[StatusCallback] = None,
                             cancel_event: Optional[threading.Event] = None) -> BridgeConnection:
        """
        Make a peer reachable through a serial device path.

        Args:
            address: Peer MAC address (or COM port on Windows)
            channel: RFCOMM channel
            status_callback: Receives progress lines
            cancel_event: Set from another thread to abort

        Returns:
            A READY connection; close() it when done
        """
        pass


def get_bridge(platform: Optional[str] = None) -> BluetoothBridge:
    """Pick the bridge implementation for the running OS."""
    platform = platform or sys.platform
    if platform == 'win32':
        from .comport import ComPortBridge
        return ComPortBridge()
    from .rfcomm import RfcommBridge
    return RfcommBridge()


def select_preferred_device(devices: List[BluetoothDevice], hints: Iterable[str] = ('nelko', 'p21')) -> BluetoothDevice:
    """
    Pick the device most likely to be the printer.

    Args:
        devices: Paired devices
        hints: Case-insensitive name fragments to prefer

    Returns:
        First device matching a hint, otherwise the first device

    Raises:
        NoDevicesFoundError: If devices is empty
    """
    if not devices:
        raise NoDevicesFoundError("No paired Bluetooth devices found")
    hints = [h.lower() for h in hints]
    for device in devices:
        name = device.name.lower()
        if any(h in name for h in hints):
            return device
    return devices[0]
