"""
Bluetooth serial ports on Windows.

Windows creates a COM port for every paired SPP device, so there is nothing
to bind: discovery reads the SERIALCOMM registry map and connecting only
checks the port name.
"""

import logging
import threading
from typing import Dict, List, Optional

import serial.tools.list_ports # type: ignore

from .bridge import (
    BluetoothBridge,
    BluetoothDevice,
    BridgeConnection,
    ConnectionState,
    DEFAULT_CHANNEL,
    StatusCallback,
    TERMINAL_STATES,
)
from .exceptions import ConnectionCanceledError, PrinterConnectionError

logger = logging.getLogger(__name__)

SERIALCOMM_KEY = r'HARDWARE\DEVICEMAP\SERIALCOMM'
BLUETOOTH_HINTS = ('bth', 'bluetooth')


def read_serialcomm() -> Dict[str, str]:
    """
    Read the SERIALCOMM registry map.

    Returns:
        Mapping of driver value name (e.g. '\\Device\\BthModem0') to port (e.g. 'COM5')

    Raises:
        OSError: If the key cannot be opened or read
    """
    import winreg # type: ignore

    ports = {}
    with winreg.OpenKey(winreg.HKEY_LOCAL_MACHINE, SERIALCOMM_KEY) as key:
        index = 0
        while True:
            try:
                name, value, _ = winreg.EnumValue(key, index)
            except OSError:
                break
            if isinstance(value, str):
                ports[name] = value
            index += 1
    return ports


def list_serial_ports() -> List[str]:
    """All COM ports from the registry, or from pyserial if the registry is unreadable."""
    try:
        return list(read_serialcomm().values())
    except OSError as e:
        logger.debug(f"[COM] Registry lookup failed, asking pyserial: {e}")

    try:
        return [port.device for port in serial.tools.list_ports.comports()]
    except OSError as e:
        logger.error(f"[COM] Could not enumerate COM ports: {e}")
        return []


def list_bluetooth_ports() -> Dict[str, str]:
    """Registry entries whose driver name looks like a Bluetooth modem."""
    try:
        entries = read_serialcomm()
    except OSError as e:
        logger.debug(f"[COM] Registry lookup failed: {e}")
        return {}
    return {
        name: port for name, port in entries.items()
        if any(hint in name.lower() for hint in BLUETOOTH_HINTS)
    }


def com_device_path(port: str) -> str:
    """Ports above COM9 must be opened through the \\\\.\\ namespace."""
    if len(port) > 4:
        return '\\\\.\\' + port
    return port


class ComPortConnection(BridgeConnection):
    """A COM port Windows already created for a paired printer."""

    def establish(self) -> "ComPortConnection":
        port = self.peer_address
        if self._cancel.is_set():
            error = ConnectionCanceledError("Connection canceled", context={'port': port})
            with self._lock:
                self._set_state(ConnectionState.CANCELED)
                self.failure = error
            raise error

        self._status(f"Using port {port}...")
        if not port.upper().startswith('COM'):
            error = PrinterConnectionError(f"Invalid COM port: {port}", context={'port': port})
            with self._lock:
                self._set_state(ConnectionState.FAILED)
                self.failure = error
            raise error

        with self._lock:
            self.device_path = com_device_path(port)
            self._set_state(ConnectionState.READY)
        self._status(f"Ready: {port}")
        logger.info(f"[COM] Using {self.device_path}")
        return self

    def close(self):
        with self._lock:
            if self._state not in TERMINAL_STATES:
                self._set_state(ConnectionState.CLOSED)

    def is_device_ready(self) -> bool:
        # A COM port can only be probed by opening it
        return bool(self.device_path)


class ComPortBridge(BluetoothBridge):
    """Windows bridge: paired SPP devices already have COM ports."""

    def list_paired_devices(self) -> List[BluetoothDevice]:
        devices = [
            BluetoothDevice(name=name, address=port)
            for name, port in list_bluetooth_ports().items()
        ]
        if not devices:
            devices = [BluetoothDevice(name=port, address=port) for port in list_serial_ports()]
        logger.info(f"[COM] Found {len(devices)} candidate device(s)")
        return devices

    def list_candidate_serial_ports(self) -> List[str]:
        return list_serial_ports()

    def establish_connection(self, address: str, channel: int = DEFAULT_CHANNEL,
                             status_callback: Optional[StatusCallback] = None,
                             cancel_event: Optional[threading.Event] = None) -> ComPortConnection:
        conn = ComPortConnection(address, status_callback, cancel_event)
        return conn.establish()
