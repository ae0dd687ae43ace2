"""
Transceiver contract shared by the serial and USB backends.

A transceiver moves opaque bytes; framing is decided by the session according
to uses_packet_framing (the serial bootloader wraps payloads in packets, the
USB bootloader exchanges bare command/response payloads).
"""

from typing import Optional

DEFAULT_TIMEOUT = 3.0


class Transceiver:
    """Abstract byte transport with open/transmit/receive/close."""

    uses_packet_framing = True

    def open(self) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def transmit(self, data: bytes) -> None:
        raise NotImplementedError

    def receive(self, length: int, timeout: Optional[float] = None) -> bytes:
        """
        Receive exactly `length` bytes.

        Args:
            length: Expected number of bytes
            timeout: Wall-clock timeout in seconds (default 3.0)

        Raises:
            TransportTimeoutError: Bytes did not arrive in time
            UnexpectedDataError: More bytes than expected arrived
        """
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return False

    def __enter__(self) -> "Transceiver":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
