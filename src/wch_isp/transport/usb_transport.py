"""
USB bulk transport for the WCH ISP bootloader.

The bootloader enumerates with a fixed vendor/product ID and exposes one bulk
IN and one bulk OUT endpoint (number 2) on interface 0. Over USB the bare
command/response payloads are exchanged without packet framing.
"""

import logging
from typing import List, Optional, Tuple

try:
    import usb.core
    import usb.util
except ImportError:
    raise ImportError("PyUSB required: pip install pyusb")

from wch_isp.errors import DeviceNotFoundError, TransportError, TransportTimeoutError
from wch_isp.transport.base import DEFAULT_TIMEOUT, Transceiver

logger = logging.getLogger(__name__)

USB_DEVICE_FILTERS: List[Tuple[int, int]] = [
    (0x4348, 0x55E0),  # WinChipHead
    (0x1A86, 0x55E0),  # QinHeng Electronics
]

CONFIGURATION_VALUE = 1
INTERFACE_NUMBER = 0
ENDPOINT_NUMBER = 0x02
ENDPOINT_OUT = ENDPOINT_NUMBER | usb.util.ENDPOINT_OUT
ENDPOINT_IN = ENDPOINT_NUMBER | usb.util.ENDPOINT_IN


def find_usb_devices(filters: Optional[List[Tuple[int, int]]] = None) -> list:
    """
    Return all connected devices matching the bootloader ID filters.

    Raises:
        TransportError: No libusb backend is available
    """
    found = []
    try:
        for vid, pid in filters or USB_DEVICE_FILTERS:
            found.extend(usb.core.find(find_all=True, idVendor=vid, idProduct=pid) or [])
    except usb.core.NoBackendError as e:
        raise TransportError(f"No USB backend available; is libusb installed? ({e})") from e
    return found


def _is_bulk_endpoint(ep, direction: int) -> bool:
    return (
        usb.util.endpoint_type(ep.bmAttributes) == usb.util.ENDPOINT_TYPE_BULK
        and usb.util.endpoint_direction(ep.bEndpointAddress) == direction
        and (ep.bEndpointAddress & 0x0F) == ENDPOINT_NUMBER
    )


class UsbTransceiver(Transceiver):
    """
    USB bulk transport for the ISP bootloader.

    Example:
        trx = UsbTransceiver()
        trx.open()
        trx.transmit(cmd.to_bytes())
        payload = trx.receive(6)
        trx.close()
    """

    uses_packet_framing = False

    def __init__(self, vid_pid: Optional[Tuple[int, int]] = None, timeout: float = DEFAULT_TIMEOUT):
        """
        Args:
            vid_pid: Restrict to a specific (vendor, product) ID pair
            timeout: Default receive timeout in seconds
        """
        self.vid_pid = vid_pid
        self.timeout = timeout
        self.device = None

    @property
    def is_open(self) -> bool:
        return self.device is not None

    def _find_device(self):
        devices = find_usb_devices([self.vid_pid] if self.vid_pid else None)
        if len(devices) > 1:
            logger.warning(f"Found {len(devices)} bootloader devices; using the first")
        device = devices[0] if devices else None
        if device is None:
            raise DeviceNotFoundError("No WCH ISP bootloader USB device found")
        return device

    def open(self) -> None:
        """
        Find, configure and claim the bootloader device.

        Raises:
            DeviceNotFoundError: No matching device is connected
            TransportError: Configuration, claim or endpoint check failed
        """
        logger.info("Opening USB connection")
        device = self._find_device()
        logger.debug(f"USB device VID: 0x{device.idVendor:04X}, PID: 0x{device.idProduct:04X}")

        try:
            if device.is_kernel_driver_active(INTERFACE_NUMBER):
                device.detach_kernel_driver(INTERFACE_NUMBER)
        except (NotImplementedError, usb.core.USBError):
            # Not supported on every platform backend.
            pass

        try:
            device.set_configuration(CONFIGURATION_VALUE)
            usb.util.claim_interface(device, INTERFACE_NUMBER)
        except usb.core.USBError as e:
            usb.util.dispose_resources(device)
            raise TransportError(
                f"Failed to select USB device configuration or claim interface: {e}"
            ) from e

        try:
            self._check_endpoints(device)
        except TransportError:
            usb.util.release_interface(device, INTERFACE_NUMBER)
            usb.util.dispose_resources(device)
            raise

        self.device = device

    @staticmethod
    def _check_endpoints(device) -> None:
        """Require exactly one bulk IN and one bulk OUT endpoint number 2."""
        cfg = device.get_active_configuration()
        iface = usb.util.find_descriptor(cfg, bInterfaceNumber=INTERFACE_NUMBER)
        if iface is None:
            raise TransportError("Failed to locate USB device interface for enumeration of endpoints")

        count_in = sum(1 for ep in iface if _is_bulk_endpoint(ep, usb.util.ENDPOINT_IN))
        count_out = sum(1 for ep in iface if _is_bulk_endpoint(ep, usb.util.ENDPOINT_OUT))
        if count_in != 1 or count_out != 1:
            raise TransportError("Selected USB device does not possess requisite endpoints")

    def close(self) -> None:
        """Release the interface and free the device."""
        if self.device is None:
            return
        device, self.device = self.device, None
        try:
            usb.util.release_interface(device, INTERFACE_NUMBER)
        except usb.core.USBError as e:
            raise TransportError(f"Failed to release interface or close device: {e}") from e
        finally:
            usb.util.dispose_resources(device)

    def _require_open(self):
        if self.device is None:
            raise TransportError("USB device not open")
        return self.device

    def transmit(self, data: bytes) -> None:
        device = self._require_open()
        try:
            written = device.write(ENDPOINT_OUT, data, timeout=int(self.timeout * 1000))
        except usb.core.USBTimeoutError as e:
            raise TransportTimeoutError(f"USB write timed out: {e}") from e
        except usb.core.USBError as e:
            raise TransportError(f"USB write error: {e}") from e
        if written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")

    def receive(self, length: int, timeout: Optional[float] = None) -> bytes:
        """Read one bulk transfer of up to `length` bytes."""
        device = self._require_open()
        if timeout is None:
            timeout = self.timeout
        try:
            data = device.read(ENDPOINT_IN, length, timeout=int(timeout * 1000))
        except usb.core.USBTimeoutError as e:
            raise TransportTimeoutError(
                f"Timed-out after {timeout * 1000:.0f} ms waiting to receive"
            ) from e
        except usb.core.USBError as e:
            raise TransportError(f"USB read error: {e}") from e
        return bytes(data)
