"""
Custom exceptions for printer operations.
"""


class PrinterError(Exception):
    """Base exception for all printer-related errors."""

    def __init__(self, message: str, context: dict = None):
        """
        Initialize printer error.

        Args:
            message: Error message
            context: Optional dictionary with additional error context
        """
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self):
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


class PrinterConnectionError(PrinterError):
    """Raised when printer connection fails."""
    pass


class NotConnectedError(PrinterConnectionError):
    """Raised when an operation needs an open printer session and there is none."""
    pass


class ConnectionTimeoutError(PrinterConnectionError):
    """Raised when the RFCOMM device does not appear before the bind deadline."""
    pass


class PrivilegeRequiredError(PrinterConnectionError):
    """Raised when neither pkexec nor sudo is available for binding."""
    pass


class ConnectionCanceledError(PrinterConnectionError):
    """Raised when the caller cancels a connection attempt before it is ready."""
    pass


class ToolMissingError(PrinterConnectionError):
    """Raised when a required Bluetooth utility (rfcomm, bluetoothctl) is not installed."""
    pass


class NoDevicesFoundError(PrinterError):
    """Raised when no paired Bluetooth device is available."""
    pass


class MalformedResponseError(PrinterError):
    """Raised when a query response is shorter than the protocol requires."""
    pass


class PrinterIOError(PrinterError):
    """Raised when writing to the serial port fails."""
    pass


class InvalidConfigurationError(PrinterError):
    """Raised when printer configuration is invalid."""
    pass
