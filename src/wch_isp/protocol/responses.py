"""
ISP bootloader responses.

Response payload layout as sent by the bootloader:
    [ code (1) | reserved (1) | length (2, little-endian) | data (length) ]

Every response type has a fixed total payload size, which is what the
transport reads for one exchange. decode_response() maps the opcode to the
matching Response subclass.
"""

import struct
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Type

from wch_isp.errors import InvalidResponseError

RESPONSE_HEADER_LEN = 4


class ResponseType(Enum):
    """Response opcodes and their fixed payload sizes."""
    IDENTIFY = (0xA1, 6)
    END = (0xA2, 6)
    KEY = (0xA3, 6)
    FLASH_ERASE = (0xA4, 6)
    FLASH_WRITE = (0xA5, 6)
    FLASH_VERIFY = (0xA6, 6)
    CONFIG_READ = (0xA7, 30)
    CONFIG_WRITE = (0xA8, 6)

    def __init__(self, code: int, size: int):
        self.code = code
        self.size = size

    @classmethod
    def from_code(cls, code: int) -> Optional["ResponseType"]:
        for member in cls:
            if member.code == code:
                return member
        return None


@dataclass(frozen=True)
class BootloaderVersion:
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


class Response:
    """Generic response: type, declared length and data bytes."""

    response_type: Optional[ResponseType] = None

    def __init__(self, response_type: Optional[ResponseType], data: bytes, length: Optional[int] = None):
        self.response_type = response_type
        self.data = bytes(data)
        self.length = len(self.data) if length is None else length

    def is_valid(self) -> bool:
        """Recognised type and declared length equal to (non-zero) data length."""
        return (
            isinstance(self.response_type, ResponseType)
            and self.length > 0
            and len(self.data) > 0
            and self.length == len(self.data)
        )

    @property
    def success(self) -> bool:
        return False

    @property
    def status(self) -> Optional[int]:
        """First data byte, which most responses use as a status code."""
        return self.data[0] if self.data else None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(length={self.length}, data={self.data.hex().upper()})"

    @classmethod
    def from_bytes(cls, payload: bytes) -> Optional["Response"]:
        """Parse a raw payload, or None when shorter than the header."""
        payload = bytes(payload)
        if len(payload) < RESPONSE_HEADER_LEN:
            return None
        (length,) = struct.unpack_from("<H", payload, 2)
        return cls(ResponseType.from_code(payload[0]), payload[RESPONSE_HEADER_LEN:], length)

    @classmethod
    def from_packet(cls, packet) -> Optional["Response"]:
        return cls.from_bytes(packet.payload)


class _StatusResponse(Response):
    """Two-byte response where status 0x00 means success."""

    @property
    def success(self) -> bool:
        return self.length == 2 and self.data[0] == 0x00


class IdentifyResponse(Response):
    @property
    def success(self) -> bool:
        # Bootloader returns 0xF1 for an incorrect password.
        return self.length == 2 and self.data[0] < 0xF0

    @property
    def device_variant(self) -> int:
        return self.data[0]

    @property
    def device_type(self) -> int:
        return self.data[1]


class EndResponse(_StatusResponse):
    pass


class KeyResponse(Response):
    @property
    def success(self) -> bool:
        # 0xFE means "seed too short", but a key checksum can also be 0xFE,
        # so any non-zero value counts as success.
        return self.length == 2 and self.data[0] > 0x00

    @property
    def key_checksum(self) -> int:
        return self.data[0]


class FlashEraseResponse(_StatusResponse):
    pass


class FlashWriteResponse(_StatusResponse):
    pass


class FlashVerifyResponse(_StatusResponse):
    # Bootloader returns 0xF5 or 0xFE on mismatch.
    pass


class ConfigReadResponse(Response):
    """
    Full config read (mask 0x1F), 26 data bytes:
        [0:2]   mask echo
        [2:10]  RDPR, nRDPR, USER, nUSER, DATA0, nDATA0, DATA1, nDATA1
        [10:14] WRPR0-3
        [14:18] bootloader version digits
        [18:26] chip unique ID
    """

    @property
    def success(self) -> bool:
        return self.length == 26 and self.data[0] > 0x00

    @property
    def option_bytes_raw(self) -> List[int]:
        """RDPR, USER, DATA0, DATA1, WRPR0-3 without the inverse bytes."""
        d = self.data
        return [d[2], d[4], d[6], d[8]] + list(d[10:14])

    @property
    def option_bytes(self) -> Dict[str, object]:
        d = self.data
        return {
            "rdpr": d[2],
            "user": d[4],
            "data": [d[6], d[8]],
            "wrpr": list(d[10:14]),
        }

    @property
    def bootloader_version(self) -> BootloaderVersion:
        d = self.data
        return BootloaderVersion(major=d[14] * 10 + d[15], minor=d[16] * 10 + d[17])

    @property
    def chip_unique_id(self) -> bytes:
        return self.data[18:]


class ConfigWriteResponse(_StatusResponse):
    pass


RESPONSE_CLASSES: Dict[ResponseType, Type[Response]] = {
    ResponseType.IDENTIFY: IdentifyResponse,
    ResponseType.END: EndResponse,
    ResponseType.KEY: KeyResponse,
    ResponseType.FLASH_ERASE: FlashEraseResponse,
    ResponseType.FLASH_WRITE: FlashWriteResponse,
    ResponseType.FLASH_VERIFY: FlashVerifyResponse,
    ResponseType.CONFIG_READ: ConfigReadResponse,
    ResponseType.CONFIG_WRITE: ConfigWriteResponse,
}


def decode_response(payload: bytes) -> Response:
    """
    Decode a response payload into its typed Response subclass.

    Raises:
        InvalidResponseError: Payload too short or opcode not recognised
    """
    payload = bytes(payload)
    if len(payload) < RESPONSE_HEADER_LEN:
        raise InvalidResponseError(
            f"Invalid response; {len(payload)} bytes is shorter than the header"
        )
    response_type = ResponseType.from_code(payload[0])
    if response_type is None:
        raise InvalidResponseError(f"Invalid response; unknown type 0x{payload[0]:02X}")
    return RESPONSE_CLASSES[response_type].from_bytes(payload)
