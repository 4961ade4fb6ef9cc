"""
Bluetooth connection management for Linux (BlueZ).
Handles paired device listing, RFCOMM slot selection, privileged binding and teardown.
"""

import logging
import os
import re
import shutil
import subprocess
import threading
import time
from typing import List, Optional

from .bridge import (
    BluetoothBridge,
    BluetoothDevice,
    BridgeConnection,
    ConnectionState,
    DEFAULT_CHANNEL,
    StatusCallback,
    TERMINAL_STATES,
)
from .exceptions import (
    ConnectionCanceledError,
    ConnectionTimeoutError,
    PrinterConnectionError,
    PrinterError,
    PrivilegeRequiredError,
    ToolMissingError,
)

logger = logging.getLogger(__name__)

RFCOMM_SLOTS = 10
BIND_TIMEOUT = 15.0
POLL_INTERVAL = 0.5
SETTLE_DELAY = 0.5
COMMAND_TIMEOUT = 5

COMMON_SERIAL_PORTS = [
    '/dev/rfcomm0', '/dev/rfcomm1',
    '/dev/ttyUSB0', '/dev/ttyUSB1',
    '/dev/ttyACM0', '/dev/ttyACM1',
]

MAC_PATTERN = re.compile(r'^([0-9A-Fa-f]{2}[:-]){5}([0-9A-Fa-f]{2})$')


def slot_path(index: int) -> str:
    return f"/dev/rfcomm{index}"


def parse_paired_devices(output: str) -> List[BluetoothDevice]:
    """
    Parse `bluetoothctl devices` output.

    Lines look like "Device XX:XX:XX:XX:XX:XX Device Name"; anything else is skipped.
    """
    devices = []
    for line in output.splitlines():
        line = line.strip()
        if not line.startswith('Device '):
            continue
        parts = line[len('Device '):].split(' ', 1)
        if len(parts) == 2 and parts[1]:
            devices.append(BluetoothDevice(name=parts[1], address=parts[0]))
    return devices


def list_paired_devices() -> List[BluetoothDevice]:
    """
    List paired devices using bluetoothctl.

    Returns:
        Paired devices, or an empty list if bluetoothctl fails

    Raises:
        ToolMissingError: If bluetoothctl is not installed
    """
    try:
        result = subprocess.run(
            ['bluetoothctl', 'devices', 'Paired'],
            capture_output=True,
            text=True,
            timeout=10,
            check=True
        )
    except FileNotFoundError:
        logger.error("[Bluetooth] bluetoothctl not found. Install with: sudo apt-get install bluez")
        raise ToolMissingError(
            "bluetoothctl not found - install with: sudo apt install bluez",
            context={'tool': 'bluetoothctl'}
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.error(f"[Bluetooth] Listing paired devices failed: {e}")
        return []

    devices = parse_paired_devices(result.stdout)
    logger.info(f"[Bluetooth] Found {len(devices)} paired device(s)")
    return devices


def list_bound_rfcomm_devices() -> List[str]:
    """
    List /dev/rfcommN devices that are currently bound.

    Uses `rfcomm -a`; when that fails, probes the slot paths directly.
    """
    try:
        result = subprocess.run(
            ['rfcomm', '-a'],
            capture_output=True,
            text=True,
            timeout=COMMAND_TIMEOUT,
            check=True
        )
    except (subprocess.SubprocessError, OSError) as e:
        logger.debug(f"[Bluetooth] rfcomm -a failed, probing device nodes: {e}")
        return [slot_path(i) for i in range(RFCOMM_SLOTS) if os.path.exists(slot_path(i))]

    devices = []
    for line in result.stdout.splitlines():
        if 'rfcomm' not in line:
            continue
        fields = line.split()
        if fields:
            devices.append(os.path.join('/dev', fields[0].rstrip(':')))
    return devices


def list_serial_ports() -> List[str]:
    """Bound RFCOMM devices plus common serial device nodes that exist."""
    ports = list_bound_rfcomm_devices()
    for port in COMMON_SERIAL_PORTS:
        if port not in ports and os.path.exists(port):
            ports.append(port)
    return ports


def check_rfcomm_installed():
    """
    Raises:
        ToolMissingError: If the rfcomm binary is not on PATH
    """
    if shutil.which('rfcomm') is None:
        raise ToolMissingError(
            "rfcomm not found - install with: sudo apt install bluez",
            context={'tool': 'rfcomm'}
        )


def find_privilege_helper() -> Optional[str]:
    """
    Find a way to run rfcomm as root.

    Returns:
        'pkexec' (PolicyKit, works from a desktop session), 'sudo', or None
    """
    if shutil.which('pkexec'):
        return 'pkexec'
    if shutil.which('sudo'):
        return 'sudo'
    return None


def privileged_command(helper: str, args: List[str]) -> List[str]:
    if helper == 'pkexec':
        return ['pkexec'] + args
    # -n: fail instead of prompting on a terminal nobody is watching
    return ['sudo', '-n'] + args


def find_available_slot() -> str:
    """
    Find the first /dev/rfcommN that is not bound.

    Returns:
        Device path of a free slot

    Raises:
        PrinterConnectionError: If every slot is taken
    """
    for i in range(RFCOMM_SLOTS):
        path = slot_path(i)
        output = ''
        try:
            result = subprocess.run(
                ['rfcomm', 'show', path],
                capture_output=True,
                text=True,
                timeout=COMMAND_TIMEOUT
            )
            output = result.stdout
        except (subprocess.SubprocessError, OSError) as e:
            logger.debug(f"[Bluetooth] rfcomm show {path} failed: {e}")

        if not output.strip() or 'No such device' in output:
            logger.debug(f"[Bluetooth] Using free slot {path}")
            return path

    raise PrinterConnectionError(
        "No available RFCOMM device slots",
        context={'slots': RFCOMM_SLOTS}
    )


class RfcommConnection(BridgeConnection):
    """
    A background `rfcomm connect` binding a peer to a /dev/rfcommN slot.

    States: IDLE -> RESOLVING -> ESCALATING -> BINDING -> POLLING -> READY,
    ending in FAILED, CANCELED or CLOSED. All transitions and the bind
    process handle are guarded by one lock.
    """

    def __init__(self, peer_address: str, channel: int = DEFAULT_CHANNEL,
                 status_callback: Optional[StatusCallback] = None,
                 cancel_event: Optional[threading.Event] = None):
        super().__init__(peer_address, status_callback, cancel_event)
        self.channel = channel
        self._helper: Optional[str] = None
        self._process: Optional[subprocess.Popen] = None
        self._bind_started = False
        self._released = False

    def _transition(self, state: ConnectionState):
        with self._lock:
            if self._cancel.is_set() or self._state in TERMINAL_STATES:
                raise ConnectionCanceledError(
                    "Connection canceled",
                    context={'mac': self.peer_address}
                )
            self._set_state(state)

    def establish(self) -> "RfcommConnection":
        """
        Bind the peer and wait for the device node to appear.

        Returns:
            self, in state READY

        Raises:
            ToolMissingError: If rfcomm is not installed
            PrivilegeRequiredError: If neither pkexec nor sudo exists
            ConnectionCanceledError: If cancel() or close() is called first
            ConnectionTimeoutError: If the device node never appears
            PrinterConnectionError: For any other bind failure
        """
        with self._lock:
            if self._state != ConnectionState.IDLE:
                raise PrinterConnectionError(
                    "Connection already started",
                    context={'state': self._state.value}
                )

        try:
            if not MAC_PATTERN.match(self.peer_address):
                raise PrinterConnectionError(
                    f"Invalid MAC address format: {self.peer_address}",
                    context={'mac': self.peer_address}
                )
            check_rfcomm_installed()

            self._transition(ConnectionState.RESOLVING)
            path = find_available_slot()
            self.device_path = path

            self._transition(ConnectionState.ESCALATING)
            helper = find_privilege_helper()
            if helper is None:
                raise PrivilegeRequiredError(
                    "Root privileges required for RFCOMM (need pkexec or sudo)",
                    context={'device': path}
                )
            self._helper = helper

            self._transition(ConnectionState.BINDING)
            self._start_bind()

            self._transition(ConnectionState.POLLING)
            self._wait_for_device()
        except ConnectionCanceledError as e:
            self._finish(ConnectionState.CANCELED, e)
            raise
        except PrinterError as e:
            self._finish(ConnectionState.FAILED, e)
            raise

        return self

    def _start_bind(self):
        cmd = privileged_command(
            self._helper,
            ['rfcomm', 'connect', self.device_path, self.peer_address, str(self.channel)]
        )
        self._status(f"Connecting to {self.peer_address}...")
        logger.info(f"[Bluetooth] Binding {self.peer_address} to {self.device_path} on channel {self.channel} via {self._helper}")

        with self._lock:
            # close() may have run while the status callback was busy
            if self._cancel.is_set() or self._released or self._state in TERMINAL_STATES:
                raise ConnectionCanceledError(
                    "Connection canceled",
                    context={'mac': self.peer_address}
                )
            try:
                self._process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    text=True,
                    bufsize=1
                )
            except OSError as e:
                raise PrinterConnectionError(
                    f"Failed to start rfcomm: {e}",
                    context={'mac': self.peer_address, 'device': self.device_path}
                )
            self._bind_started = True
            process = self._process

        for stream in (process.stdout, process.stderr):
            threading.Thread(
                target=self._forward_output,
                args=(stream,),
                name=f"rfcomm-output-{self.device_path}",
                daemon=True
            ).start()

    def _forward_output(self, stream):
        try:
            for line in iter(stream.readline, ''):
                line = line.rstrip('\r\n')
                logger.debug(f"[Bluetooth] rfcomm: {line}")
                self._status(line)
        except (ValueError, OSError):
            # Pipe closed by _cleanup
            return

    def _wait_for_device(self):
        path = self.device_path
        deadline = time.monotonic() + BIND_TIMEOUT
        while time.monotonic() < deadline:
            if self._cancel.is_set():
                break
            if os.path.exists(path):
                # The node shows up slightly before it accepts an open()
                if self._cancel.wait(SETTLE_DELAY):
                    break
                self._transition(ConnectionState.READY)
                logger.info(f"[Bluetooth] Successfully bound to {path}")
                self._status(f"Connected: {path}")
                return
            if self._cancel.wait(POLL_INTERVAL):
                break
        else:
            logger.error(f"[Bluetooth] Timed out after {BIND_TIMEOUT}s waiting for {path}")
            raise ConnectionTimeoutError(
                f"Timeout waiting for {path} to appear",
                context={'mac': self.peer_address, 'timeout': BIND_TIMEOUT}
            )

        raise ConnectionCanceledError(
            "Connection canceled",
            context={'mac': self.peer_address}
        )

    def _finish(self, state: ConnectionState, error: Exception):
        self._cleanup()
        with self._lock:
            if self._state not in TERMINAL_STATES:
                self._set_state(state)
                self.failure = error

    def _cleanup(self):
        """Stop the bind and release the slot. Never raises."""
        self._cancel.set()
        with self._lock:
            if self._released:
                return
            self._released = True
            process = self._process
            self._process = None
            bind_started = self._bind_started

        if bind_started:
            self._release_slot()

        if process is not None:
            try:
                process.kill()
                process.wait(timeout=COMMAND_TIMEOUT)
                logger.debug("[Bluetooth] rfcomm process stopped")
            except (OSError, subprocess.SubprocessError) as e:
                logger.debug(f"[Bluetooth] Could not stop rfcomm process: {e}")
            for stream in (process.stdout, process.stderr):
                if stream is not None:
                    try:
                        stream.close()
                    except OSError as e:
                        logger.debug(f"[Bluetooth] Could not close rfcomm pipe: {e}")

    def _release_slot(self):
        try:
            logger.debug(f"[Bluetooth] Releasing {self.device_path}...")
            subprocess.run(
                privileged_command(self._helper, ['rfcomm', 'release', self.device_path]),
                capture_output=True,
                timeout=COMMAND_TIMEOUT,
                check=False
            )
        except (OSError, subprocess.SubprocessError) as e:
            logger.debug(f"[Bluetooth] Could not release RFCOMM: {e}")

    def close(self):
        """Cancel any pending bind, release the slot and stop rfcomm."""
        with self._lock:
            if self._state not in TERMINAL_STATES:
                self._set_state(ConnectionState.CLOSED)
        self._cleanup()
        logger.info(f"[Bluetooth] Disconnected {self.peer_address}")

    def is_device_ready(self) -> bool:
        return bool(self.device_path) and os.path.exists(self.device_path)


class RfcommBridge(BluetoothBridge):
    """BlueZ bridge: a privileged `rfcomm connect` creates the serial device."""

    def list_paired_devices(self) -> List[BluetoothDevice]:
        return list_paired_devices()

    def list_candidate_serial_ports(self) -> List[str]:
        return list_serial_ports()

    def establish_connection(self, address: str, channel: int = DEFAULT_CHANNEL,
                             status_callback: Optional[StatusCallback] = None,
                             cancel_event: Optional[threading.Event] = None) -> RfcommConnection:
        conn = RfcommConnection(address, channel, status_callback, cancel_event)
        return conn.establish()
