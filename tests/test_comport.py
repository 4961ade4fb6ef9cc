"""
Unit tests for the Windows COM port bridge.

The registry is never read; read_serialcomm is replaced per test.
"""

import threading
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from nelko.printer import comport
from nelko.printer.bridge import ConnectionState
from nelko.printer.comport import ComPortBridge, ComPortConnection, com_device_path
from nelko.printer.exceptions import ConnectionCanceledError, PrinterConnectionError

REGISTRY = {
    '\\Device\\BthModem0': 'COM5',
    '\\Device\\Serial0': 'COM1',
    '\\Device\\BluetoothPort3': 'COM12',
}


def registry_unavailable():
    raise OSError("registry not available")


class TestPortDiscovery:

    def test_bluetooth_ports_filtered(self, monkeypatch):
        monkeypatch.setattr(comport, 'read_serialcomm', lambda: dict(REGISTRY))

        devices = ComPortBridge().list_paired_devices()

        assert sorted(d.address for d in devices) == ['COM12', 'COM5']
        assert all(d.name != '\\Device\\Serial0' for d in devices)

    def test_falls_back_to_all_ports(self, monkeypatch):
        monkeypatch.setattr(comport, 'read_serialcomm', lambda: {'\\Device\\Serial0': 'COM1'})

        devices = ComPortBridge().list_paired_devices()

        assert [(d.name, d.address) for d in devices] == [('COM1', 'COM1')]

    def test_serial_ports_from_registry(self, monkeypatch):
        monkeypatch.setattr(comport, 'read_serialcomm', lambda: dict(REGISTRY))

        assert sorted(ComPortBridge().list_candidate_serial_ports()) == ['COM1', 'COM12', 'COM5']

    @patch('nelko.printer.comport.serial.tools.list_ports.comports')
    def test_serial_ports_without_registry(self, mock_comports, monkeypatch):
        monkeypatch.setattr(comport, 'read_serialcomm', registry_unavailable)
        mock_comports.return_value = [SimpleNamespace(device='COM3'), SimpleNamespace(device='COM4')]

        assert comport.list_serial_ports() == ['COM3', 'COM4']

    def test_no_registry_no_bluetooth_ports(self, monkeypatch):
        monkeypatch.setattr(comport, 'read_serialcomm', registry_unavailable)

        assert comport.list_bluetooth_ports() == {}


class TestComPortConnection:

    def test_establish(self):
        messages = []

        conn = ComPortBridge().establish_connection('COM5', status_callback=messages.append)

        assert conn.state == ConnectionState.READY
        assert conn.device_path == 'COM5'
        assert conn.is_device_ready()
        assert messages == ["Using port COM5...", "Ready: COM5"]

    def test_high_port_uses_device_namespace(self):
        conn = ComPortConnection('COM10').establish()

        assert conn.device_path == '\\\\.\\COM10'
        assert com_device_path('COM9') == 'COM9'

    def test_rejects_non_com_port(self):
        conn = ComPortConnection('/dev/ttyUSB0')

        with pytest.raises(PrinterConnectionError):
            conn.establish()

        assert conn.state == ConnectionState.FAILED
        assert conn.device_path is None

    def test_canceled_before_establish(self):
        cancel = threading.Event()
        cancel.set()
        messages = []
        conn = ComPortConnection('COM5', messages.append, cancel)

        with pytest.raises(ConnectionCanceledError):
            conn.establish()

        assert conn.state == ConnectionState.CANCELED
        assert conn.device_path is None
        assert messages == []

    def test_close(self):
        conn = ComPortConnection('COM5', cancel_event=threading.Event()).establish()

        conn.close()
        conn.close()

        assert conn.state == ConnectionState.CLOSED
