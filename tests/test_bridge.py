"""
Unit tests for bridge selection and device preference.
"""

import pytest

from nelko.printer.bridge import BluetoothDevice, get_bridge, select_preferred_device
from nelko.printer.comport import ComPortBridge
from nelko.printer.exceptions import NoDevicesFoundError
from nelko.printer.rfcomm import RfcommBridge


class TestSelectPreferredDevice:

    def test_prefers_printer_name(self):
        devices = [
            BluetoothDevice("Headphones", "11:22:33:44:55:66"),
            BluetoothDevice("NELKO P21", "AA:BB:CC:DD:EE:FF"),
        ]

        assert select_preferred_device(devices).address == "AA:BB:CC:DD:EE:FF"

    def test_matches_model_name(self):
        devices = [
            BluetoothDevice("Phone", "11:22:33:44:55:66"),
            BluetoothDevice("P21-1234", "AA:BB:CC:DD:EE:FF"),
        ]

        assert select_preferred_device(devices).name == "P21-1234"

    def test_falls_back_to_first(self):
        devices = [
            BluetoothDevice("Phone", "11:22:33:44:55:66"),
            BluetoothDevice("Speaker", "AA:BB:CC:DD:EE:FF"),
        ]

        assert select_preferred_device(devices).name == "Phone"

    def test_custom_hints(self):
        devices = [
            BluetoothDevice("Nelko P21", "11:22:33:44:55:66"),
            BluetoothDevice("Shelf printer", "AA:BB:CC:DD:EE:FF"),
        ]

        assert select_preferred_device(devices, hints=["shelf"]).name == "Shelf printer"

    def test_no_devices(self):
        with pytest.raises(NoDevicesFoundError):
            select_preferred_device([])

    def test_device_label(self):
        assert BluetoothDevice("P21", "AA:BB").label == "P21 (AA:BB)"


class TestGetBridge:

    def test_windows(self):
        assert isinstance(get_bridge('win32'), ComPortBridge)

    def test_linux(self):
        assert isinstance(get_bridge('linux'), RfcommBridge)
