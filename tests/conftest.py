"""Shared test doubles: a simulated ISP bootloader behind the Transceiver API."""

import struct
from typing import Dict, List, Optional

import pytest

from wch_isp.transport.base import Transceiver
from wch_isp.utils.crypto import byte_sum, derive_key, xor_crypt

# Words 0x0201 + 0x0403 + 0x0605 = 0x0C09, stored as the fourth word.
VALID_UID = bytes([0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x09, 0x0C])
BAD_UID = bytes([0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x00, 0x00])
DEFAULT_OPTION_BYTES = [0xA5, 0x3F, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF, 0xFF]


def response_payload(code: int, data: bytes) -> bytes:
    """Response payload: code, reserved, LE length, data."""
    return bytes([code, 0x00]) + struct.pack("<H", len(data)) + bytes(data)


def frame_response(payload: bytes) -> bytes:
    return b"\x55\xAA" + payload + bytes([byte_sum(payload)])


def config_read_data(option_bytes, version=(2, 9), uid=VALID_UID) -> bytes:
    """26 data bytes of a full config read response."""
    rdpr, user, data0, data1 = option_bytes[:4]
    data = bytearray([0x1F, 0x00])
    for value in (rdpr, user, data0, data1):
        data += bytes([value, ~value & 0xFF])
    data += bytes(option_bytes[4:8])
    major, minor = version
    data += bytes([major // 10, major % 10, minor // 10, minor % 10])
    data += uid
    return bytes(data)


class FakeBootloader(Transceiver):
    """
    In-memory ISP bootloader.

    Decodes each transmitted command, keeps a flash image, derives the same
    session key as the host and queues the matching response.
    """

    def __init__(
        self,
        variant: int = 0x30,
        device_type: int = 0x21,
        uid: bytes = VALID_UID,
        option_bytes: Optional[List[int]] = None,
        version=(2, 9),
        flash_size: int = 16 * 1024,
        framed: bool = True,
    ):
        self.uses_packet_framing = framed
        self.variant = variant
        self.device_type = device_type
        self.uid = uid
        self.option_bytes = list(option_bytes or DEFAULT_OPTION_BYTES)
        self.version = version
        self.flash = bytearray(b"\xFF" * flash_size)

        self.key: Optional[bytes] = None
        self.fail: Dict[int, int] = {}
        self.key_checksum_offset = 0
        self.raw_responses: List[bytes] = []

        self.commands: List[tuple] = []
        self.sent: List[bytes] = []
        self._pending: List[bytes] = []
        self.open_count = 0
        self.close_count = 0
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self) -> None:
        self.open_count += 1
        self._open = True

    def close(self) -> None:
        self.close_count += 1
        self._open = False

    def codes(self) -> List[int]:
        return [code for code, _ in self.commands]

    def transmit(self, data: bytes) -> None:
        data = bytes(data)
        self.sent.append(data)
        if self.uses_packet_framing:
            assert data[:2] == b"\x57\xAB"
            assert data[-1] == byte_sum(data[2:-1])
            data = data[2:-1]

        code = data[0]
        (length,) = struct.unpack_from("<H", data, 1)
        body = data[3:]
        assert len(body) == length
        self.commands.append((code, body))

        if self.raw_responses:
            self._pending.append(self.raw_responses.pop(0))
            return

        payload = response_payload(code, self._handle(code, body))
        self._pending.append(frame_response(payload) if self.uses_packet_framing else payload)

    def receive(self, length: int, timeout: Optional[float] = None) -> bytes:
        return self._pending.pop(0)

    def _status(self, code: int) -> bytes:
        return bytes([0x00, 0x00])

    def _handle(self, code: int, body: bytes) -> bytes:
        if code in self.fail:
            return bytes([self.fail[code], 0x00])
        if code == 0xA1:
            return bytes([self.variant, self.device_type])
        if code == 0xA3:
            self.key, checksum = derive_key(self.uid, self.variant, body)
            return bytes([(checksum + self.key_checksum_offset) & 0xFF, 0x00])
        if code == 0xA4:
            (sectors,) = struct.unpack("<I", body)
            end = min(sectors * 1024, len(self.flash))
            self.flash[:end] = b"\xFF" * end
            return self._status(code)
        if code in (0xA5, 0xA6):
            (offset,) = struct.unpack_from("<I", body)
            cipher = body[5:]
            plain = xor_crypt(cipher, self.key) if cipher else b""
            if code == 0xA5:
                self.flash[offset:offset + len(plain)] = plain
            elif self.flash[offset:offset + len(plain)] != plain:
                return bytes([0xF5, 0x00])
            return self._status(code)
        if code == 0xA7:
            return config_read_data(self.option_bytes, self.version, self.uid)
        if code == 0xA8:
            self.option_bytes = [body[2], body[4], body[6], body[8]] + list(body[10:14])
            return self._status(code)
        return self._status(code)


@pytest.fixture
def bootloader():
    return FakeBootloader()


@pytest.fixture
def usb_bootloader():
    return FakeBootloader(framed=False)


@pytest.fixture(autouse=True)
def fixed_seed(monkeypatch):
    """Deterministic key seeds so a zero key checksum never shows up by chance."""
    monkeypatch.setattr(
        "wch_isp.protocol.commands.generate_seed", lambda length=60: bytes(range(length))
    )
