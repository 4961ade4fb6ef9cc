"""
Unified printer management interface.

Owns the single live Bluetooth connection and serial session for one
application instance and runs discovery, connecting and printing on a small
worker pool. Every operation returns a Future; progress is reported on a
StatusChannel the caller drains.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import List, Optional

from PIL import Image # type: ignore

from nelko.config import load_config
from nelko.image.raster import Bitmap, rasterize_image
from nelko.image.text import Orientation, TextOptions, rasterize_text
from nelko.tspl.encoder import encode_job
from nelko.tspl.labels import LabelSize, get_label_size

from . import client
from .bridge import BluetoothBridge, BluetoothDevice, BridgeConnection, get_bridge, select_preferred_device
from .events import DONE, ERROR, StatusChannel
from .exceptions import NotConnectedError, PrinterError, ToolMissingError

logger = logging.getLogger(__name__)


class PrinterManager:
    """Single entry point for discovery, connection and printing."""

    def __init__(self, config: Optional[dict] = None, bridge: Optional[BluetoothBridge] = None,
                 channel: Optional[StatusChannel] = None):
        """
        Initialize printer manager.

        Args:
            config: Configuration dictionary (defaults from nelko.config)
            bridge: Discovery/connection backend; picked for the running OS if None
            channel: Where status events go; a new channel if None
        """
        self.config = config or load_config()
        self.bridge = bridge or get_bridge()
        self.events = channel or StatusChannel()

        self.label: LabelSize = get_label_size(self.config['label']['size'])
        self.devices: List[BluetoothDevice] = []
        self.device: Optional[BluetoothDevice] = None
        self.connection: Optional[BridgeConnection] = None
        self.session: Optional[client.PrinterSession] = None

        self._pending_cancel: Optional[threading.Event] = None
        self._connect_lock = threading.Lock()
        self._session_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=self.config['printer'].get('max_workers', 2),
            thread_name_prefix='printer'
        )

        logger.info(f"[Manager] Bridge: {type(self.bridge).__name__}, label: {self.label.name}")

    def _submit(self, description: str, fn, *args) -> Future:
        def task():
            try:
                return fn(*args)
            except PrinterError as e:
                self.events.emit(ERROR, f"{description} failed: {e}")
                raise
        return self._executor.submit(task)

    @property
    def is_connected(self) -> bool:
        return self.session is not None and self.session.is_open

    def set_label(self, name: str):
        self.label = get_label_size(name)

    # Discovery

    def refresh_devices(self) -> Future:
        """List paired devices in the background; the Future yields the list."""
        return self._submit("BT scan", self._refresh_devices)

    def _refresh_devices(self) -> List[BluetoothDevice]:
        self.events("Scanning for paired devices...")
        try:
            self.devices = self.bridge.list_paired_devices()
        except ToolMissingError as e:
            self.events.emit(ERROR, str(e))
            self.devices = []
            return self.devices
        self.events.emit(DONE, f"Found {len(self.devices)} paired device(s)")
        return self.devices

    def list_ports(self) -> Future:
        return self._submit("Port scan", self.bridge.list_candidate_serial_ports)

    def select_device(self) -> BluetoothDevice:
        """Pick the likeliest printer from the last refresh_devices() result."""
        return select_preferred_device(self.devices, self.config['printer'].get('preferred_names', ()))

    # Connection

    def connect_bluetooth(self, device: BluetoothDevice) -> Future:
        """
        Bind and open a connection to a paired printer.

        Any existing connection is closed first. cancel_connect() aborts the
        bind while it is still waiting for the device.
        """
        self.cancel_connect()
        cancel = threading.Event()
        self._pending_cancel = cancel
        return self._submit("Connection", self._connect_bluetooth, device, cancel)

    def _connect_bluetooth(self, device: BluetoothDevice, cancel: threading.Event) -> client.PrinterSession:
        with self._connect_lock:
            self._disconnect()
            self.events(f"Connecting to {device.name}...")
            try:
                conn = self.bridge.establish_connection(
                    device.address,
                    channel=self.config['printer'].get('rfcomm_channel', 1),
                    status_callback=self.events,
                    cancel_event=cancel
                )
            finally:
                if self._pending_cancel is cancel:
                    self._pending_cancel = None

            try:
                session = client.connect(conn.device_path)
            except PrinterError:
                conn.close()
                raise

            self.connection = conn
            self.session = session
            self.device = device

            message = f"Connected to {device.name} via {conn.device_path}"
            try:
                with self._session_lock:
                    battery = session.get_battery()
                message = f"Connected to {device.name} (Battery: {battery}%)"
            except PrinterError as e:
                logger.debug(f"[Manager] Battery query failed: {e}")

            self.events.emit(DONE, message)
            return session

    def connect_port(self, port: str) -> Future:
        """Open a serial port that is already bound to the printer."""
        return self._submit("Connection", self._connect_port, port)

    def _connect_port(self, port: str) -> client.PrinterSession:
        with self._connect_lock:
            self._disconnect()
            session = client.connect(port)
            self.session = session

            message = f"Connected to {port}"
            try:
                with self._session_lock:
                    battery = session.get_battery()
                message = f"Connected to {port} (Battery: {battery}%)"
            except PrinterError as e:
                logger.debug(f"[Manager] Battery query failed: {e}")

            self.events.emit(DONE, message)
            return session

    def cancel_connect(self):
        """Abort a connect_bluetooth() that has not finished yet."""
        cancel = self._pending_cancel
        if cancel is not None:
            logger.info("[Manager] Canceling pending connection")
            cancel.set()

    def disconnect(self):
        """Cancel any pending bind, then close the session and the connection."""
        self.cancel_connect()
        with self._connect_lock:
            self._disconnect()

    def _disconnect(self):
        had_connection = self.session is not None or self.connection is not None
        if self.session is not None:
            with self._session_lock:
                self.session.close()
            self.session = None
        if self.connection is not None:
            self.connection.close()
            self.connection = None
        self.device = None
        if had_connection:
            self.events("Disconnected")
            logger.info("[Manager] Printer disconnected")

    # Printing

    def _require_session(self) -> client.PrinterSession:
        if not self.is_connected:
            raise NotConnectedError("Not connected to printer")
        return self.session

    def print_bitmap(self, bitmap: Bitmap, label: Optional[LabelSize] = None,
                     density: Optional[int] = None, copies: Optional[int] = None) -> Future:
        """
        Encode and send a rendered label.

        Args:
            bitmap: Raster for the label (set bits are dark)
            label: Label size; the configured one if None
            density: Print darkness 0-15; configured value if None
            copies: Number of copies; configured value if None
        """
        return self._submit("Print", self._print_bitmap, bitmap, label, density, copies)

    def _print_bitmap(self, bitmap: Bitmap, label: Optional[LabelSize],
                      density: Optional[int], copies: Optional[int]) -> bool:
        label_settings = self.config['label']
        label = label or self.label
        density = label_settings['density'] if density is None else density
        copies = label_settings['copies'] if copies is None else copies

        if self.config['printer'].get('invert_on_wire', True):
            # The P21 burns a dot for a clear BITMAP bit
            bitmap = bitmap.inverted()
        job = encode_job(label, density, bitmap, copies)

        session = self._require_session()
        self.events("Printing...")
        with self._session_lock:
            session.print(job)
        self.events.emit(DONE, "Print complete!")
        return True

    def print_image(self, image: Image.Image, label: Optional[LabelSize] = None,
                    threshold: Optional[int] = None, invert: Optional[bool] = None,
                    density: Optional[int] = None, copies: Optional[int] = None) -> Future:
        """Rasterize an image with the configured settings and print it."""
        return self._submit("Print", self._print_image, image, label, threshold, invert, density, copies)

    def _print_image(self, image, label, threshold, invert, density, copies) -> bool:
        settings = self.config['image_settings']
        label = label or self.label
        bitmap = rasterize_image(
            image,
            label.pixel_width,
            label.pixel_height,
            threshold=settings['threshold'] if threshold is None else threshold,
            invert=settings['invert'] if invert is None else invert
        )
        return self._print_bitmap(bitmap, label, density, copies)

    def text_options(self) -> TextOptions:
        settings = self.config['text_settings']
        return TextOptions(
            font_size=settings['font_size'],
            orientation=Orientation(settings['orientation']),
            invert=settings['invert'],
            word_break_only=settings['word_break_only'],
            font_path=settings.get('font_path')
        )

    def print_text(self, text: str, label: Optional[LabelSize] = None,
                   options: Optional[TextOptions] = None,
                   density: Optional[int] = None, copies: Optional[int] = None) -> Future:
        """Render text and print it. Empty text prints nothing; the Future yields False."""
        return self._submit("Print", self._print_text, text, label, options, density, copies)

    def _print_text(self, text, label, options, density, copies) -> bool:
        label = label or self.label
        bitmap = rasterize_text(text, label.pixel_width, label.pixel_height, options or self.text_options())
        if bitmap is None:
            self.events.emit(ERROR, "Nothing to print")
            return False
        return self._print_bitmap(bitmap, label, density, copies)

    # Queries

    def get_battery(self) -> Future:
        return self._submit("Battery query", self._query, client.PrinterSession.get_battery)

    def get_config(self) -> Future:
        return self._submit("Config query", self._query, client.PrinterSession.get_config)

    def _query(self, method):
        session = self._require_session()
        with self._session_lock:
            return method(session)

    def shutdown(self):
        """Disconnect and stop the worker pool."""
        self.disconnect()
        self._executor.shutdown(wait=True)
        logger.info("[Manager] Shut down")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
