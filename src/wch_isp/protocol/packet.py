"""
Packet framing for the WCH ISP serial protocol.

Frame format (both directions):
    [ magic (2) | payload (N) | checksum (1) ]

Command packets use magic 57 AB, response packets 55 AA. The checksum is the
8-bit running sum of the payload bytes. It only catches casual corruption.

Responses are fixed-length per operation, so the receiver always knows how
many bytes make up one packet (see size_for_response_type).
"""

from enum import Enum
from typing import Optional

from wch_isp.utils.crypto import byte_sum
from wch_isp.utils.formatting import hex_bytes


class PacketType(Enum):
    """Packet direction and its magic header."""
    COMMAND = bytes([0x57, 0xAB])
    RESPONSE = bytes([0x55, 0xAA])

    @property
    def header(self) -> bytes:
        return self.value


def checksum(payload: bytes) -> int:
    """Packet checksum: sum of payload bytes mod 256."""
    return byte_sum(payload)


class Packet:
    """
    A framed packet.

    Built either from a command (checksum computed here) or parsed from wire
    bytes (header and checksum stored exactly as received, then checked by
    is_valid()).
    """

    def __init__(self, payload: bytes, packet_type: PacketType = PacketType.COMMAND):
        self.packet_type = packet_type
        self.header = packet_type.header
        self.payload = bytes(payload)
        self.checksum = checksum(self.payload)

    def calculate_checksum(self) -> int:
        return checksum(self.payload)

    def is_valid(self) -> bool:
        """Header matches the packet type and stored checksum matches payload."""
        return (
            self.header == self.packet_type.header
            and self.checksum == self.calculate_checksum()
        )

    def to_bytes(self) -> bytes:
        return self.header + self.payload + bytes([self.checksum & 0xFF])

    def __len__(self) -> int:
        return len(self.header) + len(self.payload) + 1

    def __str__(self) -> str:
        return hex_bytes(self.header) + hex_bytes(self.payload) + hex_bytes(self.checksum)

    def __repr__(self) -> str:
        return f"Packet({self.packet_type.name}, {self})"

    @classmethod
    def from_command(cls, cmd) -> "Packet":
        return cls(cmd.to_bytes(), PacketType.COMMAND)

    @classmethod
    def from_bytes(cls, data: bytes, packet_type: PacketType = PacketType.RESPONSE) -> "Packet":
        """
        Parse raw wire bytes.

        Input shorter than header + checksum yields a packet that fails
        is_valid() rather than raising.
        """
        data = bytes(data)
        packet = cls(b"", packet_type)
        if len(data) < 3:
            packet.header = data
            packet.checksum = -1
            return packet
        packet.header = data[:2]
        packet.payload = data[2:-1]
        packet.checksum = data[-1]
        return packet

    @staticmethod
    def size_for_response_type(response_type) -> int:
        """Total wire size of a response packet of the given type."""
        return response_type.size + 3


def encode(payload: bytes, packet_type: PacketType = PacketType.COMMAND) -> bytes:
    """Frame a payload: header + payload + checksum."""
    return Packet(payload, packet_type).to_bytes()


def decode(data: bytes, packet_type: Optional[PacketType] = None) -> Packet:
    """
    Parse framed bytes into a Packet.

    When packet_type is omitted, it is inferred from the magic header
    (falling back to RESPONSE for unknown headers).
    """
    if packet_type is None:
        packet_type = PacketType.RESPONSE
        if bytes(data[:2]) == PacketType.COMMAND.header:
            packet_type = PacketType.COMMAND
    return Packet.from_bytes(data, packet_type)
