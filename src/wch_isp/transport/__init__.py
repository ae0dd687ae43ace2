"""Transport layer - serial and USB bulk transceivers."""

from .base import Transceiver, DEFAULT_TIMEOUT
from .serial_transport import (
    SerialTransceiver,
    BAUD_RATE,
    FLUSH_DENYLIST,
    list_serial_ports,
)
from .usb_transport import (
    UsbTransceiver,
    USB_DEVICE_FILTERS,
    find_usb_devices,
)

__all__ = [
    "Transceiver",
    "DEFAULT_TIMEOUT",
    "SerialTransceiver",
    "BAUD_RATE",
    "FLUSH_DENYLIST",
    "list_serial_ports",
    "UsbTransceiver",
    "USB_DEVICE_FILTERS",
    "find_usb_devices",
]
