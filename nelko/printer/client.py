"""
Serial session with the P21: status queries and print job transmission.
"""

import logging
import time
from typing import Optional

import serial # type: ignore

from nelko.tspl.encoder import BATTERY_QUERY, CANCEL_PAUSE, CONFIG_QUERY, STATUS_QUERY

from .exceptions import (
    MalformedResponseError,
    NotConnectedError,
    PrinterConnectionError,
    PrinterIOError,
)

logger = logging.getLogger(__name__)

BAUDRATE = 115200
READ_TIMEOUT = 3.0
PAUSE_SETTLE = 0.1

# BATTERY? answers "BATTERY" followed by the percentage byte
BATTERY_VALUE_INDEX = 7


class PrinterSession:
    """
    One open serial handle to the printer.

    Not reentrant: callers must not run print/query calls concurrently.
    """

    def __init__(self, connection: serial.Serial, port_name: str):
        self.connection: Optional[serial.Serial] = connection
        self.port_name = port_name

    @property
    def is_open(self) -> bool:
        return self.connection is not None and self.connection.is_open

    def _require_open(self) -> serial.Serial:
        if not self.is_open:
            raise NotConnectedError("Printer not connected", context={'port': self.port_name})
        return self.connection

    def _write(self, data: bytes) -> int:
        conn = self._require_open()
        try:
            written = conn.write(data)
            conn.flush()
            return written
        except serial.SerialException as e:
            logger.error(f"[Printer] Write to {self.port_name} failed: {e}")
            raise PrinterIOError(f"Write failed: {e}", context={'port': self.port_name})

    def query(self, command: str) -> str:
        """
        Send a command and read a one-line reply.

        Args:
            command: Command text without line terminator

        Returns:
            The reply without surrounding whitespace, decoded byte-for-byte
            (latin-1); empty if nothing complete arrived before the read timeout
        """
        self._write(command.encode('ascii') + b"\r\n")
        conn = self.connection
        try:
            raw = conn.readline()
        except serial.SerialException as e:
            logger.error(f"[Printer] Read from {self.port_name} failed: {e}")
            raise PrinterIOError(f"Read failed: {e}", context={'port': self.port_name})

        if not raw.endswith(b"\n"):
            # Many commands never answer
            logger.debug(f"[Printer] No reply to {command}")
            return ""
        response = raw.strip().decode('latin-1')
        logger.debug(f"[Printer] {command} -> {response!r}")
        return response

    def get_battery(self) -> int:
        """
        Read the battery level.

        Returns:
            Battery percentage

        Raises:
            MalformedResponseError: If the reply is too short to hold the value
        """
        response = self.query(BATTERY_QUERY)
        if len(response) <= BATTERY_VALUE_INDEX:
            raise MalformedResponseError(
                "Invalid battery response",
                context={'response': repr(response)}
            )
        return ord(response[BATTERY_VALUE_INDEX])

    def get_config(self) -> str:
        """Raw CONFIG? reply, passed through unparsed."""
        return self.query(CONFIG_QUERY)

    def cancel_pause(self):
        """Clear a paused state so the next job prints."""
        self._write(CANCEL_PAUSE)

    def check_ready(self) -> bool:
        """
        Ask for the status byte.

        Returns:
            True if the printer answered before the read timeout
        """
        self._write(STATUS_QUERY)
        try:
            reply = self.connection.read(32)
        except serial.SerialException as e:
            raise PrinterIOError(f"Read failed: {e}", context={'port': self.port_name})
        return len(reply) > 0

    def print(self, job: bytes):
        """
        Send an encoded job.

        Success means the write returned without an I/O error; the printer
        does not acknowledge jobs.

        Raises:
            NotConnectedError: If the session is closed
            PrinterIOError: If the write fails
        """
        self._require_open()
        self.cancel_pause()
        time.sleep(PAUSE_SETTLE)
        written = self._write(job)
        logger.info(f"[Printer] Sent {written} bytes to {self.port_name}")

    def close(self):
        if self.connection is not None:
            try:
                self.connection.close()
                logger.info(f"[Printer] Closed {self.port_name}")
            except serial.SerialException as e:
                logger.debug(f"[Printer] Error closing {self.port_name}: {e}")
            finally:
                self.connection = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def connect(port_name: str) -> PrinterSession:
    """
    Open the printer's serial port at 115200-8-N-1.

    Args:
        port_name: Device path, e.g. '/dev/rfcomm0' or 'COM5'

    Returns:
        An open PrinterSession

    Raises:
        PrinterConnectionError: If the port cannot be opened
    """
    logger.info(f"[Printer] Connecting to {port_name} at {BAUDRATE} baud...")
    try:
        conn = serial.Serial(
            port=port_name,
            baudrate=BAUDRATE,
            bytesize=serial.EIGHTBITS,
            parity=serial.PARITY_NONE,
            stopbits=serial.STOPBITS_ONE,
            timeout=READ_TIMEOUT
        )
    except serial.SerialException as e:
        logger.error(f"[Printer] Serial connection error: {e}")
        raise PrinterConnectionError(
            f"Failed to open port {port_name}: {e}",
            context={'port': port_name}
        )
    return PrinterSession(conn, port_name)
