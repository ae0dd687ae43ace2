"""
Serial (UART) transport for the WCH ISP bootloader.

Handles:
- Serial port open/close at 115200 8-N-1, no flow control
- Flushing stale input on open (skipped for bridges that hang on it)
- Chunked receive with a hard wall-clock timeout
"""

import logging
import time
from typing import List, Optional, Tuple

try:
    import serial
    import serial.tools.list_ports
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

from wch_isp.errors import TransportError, TransportTimeoutError, UnexpectedDataError
from wch_isp.transport.base import DEFAULT_TIMEOUT, Transceiver

logger = logging.getLogger(__name__)

BAUD_RATE = 115200

# USB-serial bridges (VID, PID) whose drivers hang when the input buffer is
# drained right after opening.
FLUSH_DENYLIST: List[Tuple[int, int]] = [
    (0x1A86, 0x55D3),  # WCH CH343
    (0x1A86, 0x55D4),  # WCH CH9102
]

FLUSH_TIMEOUT = 0.05


def list_serial_ports() -> list:
    """Return pyserial ListPortInfo objects for all available ports."""
    return list(serial.tools.list_ports.comports())


def port_usb_ids(port: str) -> Optional[Tuple[int, int]]:
    """Look up the USB (VID, PID) of a serial port, if it has one."""
    for info in list_serial_ports():
        if info.device == port and info.vid is not None:
            return (info.vid, info.pid)
    return None


class SerialTransceiver(Transceiver):
    """
    Serial transport for the ISP bootloader.

    Example:
        trx = SerialTransceiver("/dev/ttyUSB0")
        trx.open()
        trx.transmit(packet.to_bytes())
        data = trx.receive(9)
        trx.close()
    """

    uses_packet_framing = True

    def __init__(self, port: str, flush: bool = True, timeout: float = DEFAULT_TIMEOUT):
        """
        Args:
            port: Serial port (e.g., "/dev/ttyUSB0", "COM3")
            flush: Drain stale input bytes after opening
            timeout: Default receive timeout in seconds
        """
        self.port = port
        self.flush = flush
        self.timeout = timeout
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self) -> None:
        """
        Open and configure the serial port.

        Raises:
            TransportError: If port cannot be opened
        """
        try:
            self.ser = serial.Serial(
                port=self.port,
                baudrate=BAUD_RATE,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.timeout,
                write_timeout=self.timeout,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}") from e

        logger.debug(f"Opened {self.port} at {BAUD_RATE} bps")

        if self.flush:
            if port_usb_ids(self.port) in FLUSH_DENYLIST:
                logger.debug(f"Skipping input flush for {self.port} (bridge on denylist)")
            else:
                self._drain_junk()

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def _require_open(self) -> "serial.Serial":
        if not self.ser or not self.ser.is_open:
            raise TransportError("Serial port not open")
        return self.ser

    def _drain_junk(self) -> bytes:
        """
        Discard any bytes already waiting in the receive buffer.

        Some adapters present a spurious 0x00 right after opening, which would
        otherwise overrun the first response.
        """
        ser = self._require_open()
        old_timeout = ser.timeout
        try:
            ser.reset_input_buffer()
            ser.timeout = FLUSH_TIMEOUT
            junk = ser.read(256)
        except serial.SerialException as e:
            raise TransportError(f"Flush error on {self.port}: {e}") from e
        finally:
            ser.timeout = old_timeout
        if junk:
            logger.debug(f"Drained {len(junk)} bytes of junk from buffer")
        return junk

    def transmit(self, data: bytes) -> None:
        """
        Send raw bytes.

        Raises:
            TransportError: If write fails or is incomplete
        """
        ser = self._require_open()
        try:
            written = ser.write(data)
            ser.flush()
        except serial.SerialTimeoutException as e:
            raise TransportTimeoutError(f"Write timed out on {self.port}: {e}") from e
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}") from e
        if written is not None and written != len(data):
            raise TransportError(f"Incomplete write: sent {written}/{len(data)} bytes")

    def receive(self, length: int, timeout: Optional[float] = None) -> bytes:
        """
        Accumulate chunks until `length` bytes arrive or the timeout expires.

        Raises:
            TransportTimeoutError: Not enough bytes before the deadline
            UnexpectedDataError: A chunk would overrun the expected length
        """
        ser = self._require_open()
        if timeout is None:
            timeout = self.timeout

        buf = bytearray()
        deadline = time.monotonic() + timeout
        old_timeout = ser.timeout
        try:
            while len(buf) < length:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise TransportTimeoutError(
                        f"Timed-out after {timeout * 1000:.0f} ms waiting to receive "
                        f"({len(buf)}/{length} bytes)"
                    )
                ser.timeout = remaining
                chunk = ser.read(max(1, ser.in_waiting))
                if not chunk:
                    continue
                if len(buf) + len(chunk) > length:
                    raise UnexpectedDataError(
                        f"Unexpected data; received more than {length} bytes"
                    )
                buf.extend(chunk)
        except serial.SerialException as e:
            raise TransportError(f"Read error: {e}") from e
        finally:
            ser.timeout = old_timeout

        return bytes(buf)
