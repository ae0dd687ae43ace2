"""
ISP bootloader command vocabulary.

Command payload layout:
    [ code (1) | length (2, little-endian) | data (length) ]

Each operation has a concrete Command subclass that knows how to build its
data field.
"""

import struct
from enum import Enum
from typing import Optional, Sequence

from wch_isp.utils.crypto import (
    SEED_MAX_LEN,
    clamp_seed_length,
    derive_key,
    generate_seed,
    xor_crypt,
)

IDENTIFY_PASSWORD = b"MCU ISP & WCH.CN"

# Config read bit-mask values
CONFIG_MASK_RDPR_USER = 0x01
CONFIG_MASK_DATA = 0x02
CONFIG_MASK_WRPR = 0x04
CONFIG_MASK_BTVER = 0x08
CONFIG_MASK_UNIID = 0x10
CONFIG_MASK_ALL = 0x1F

# Config write only covers the writable groups
CONFIG_WRITE_MASK = CONFIG_MASK_RDPR_USER | CONFIG_MASK_DATA | CONFIG_MASK_WRPR
CONFIG_BYTES_LEN = 8


class CommandType(Enum):
    """Command opcodes."""
    IDENTIFY = 0xA1
    END = 0xA2
    KEY = 0xA3
    FLASH_ERASE = 0xA4
    FLASH_WRITE = 0xA5
    FLASH_VERIFY = 0xA6
    CONFIG_READ = 0xA7
    CONFIG_WRITE = 0xA8

    @property
    def code(self) -> int:
        return self.value

    @classmethod
    def is_valid_code(cls, code: int) -> bool:
        return any(member.value == code for member in cls)


class Command:
    """Generic command: opcode plus little-endian length-prefixed data."""

    def __init__(self, command_type: CommandType, data: bytes, length: Optional[int] = None):
        self.command_type = command_type
        self.data = bytes(data)
        self.length = len(self.data) if length is None else length

    def to_bytes(self) -> bytes:
        return struct.pack("<BH", self.command_type.code, self.length) + self.data

    def __repr__(self) -> str:
        return f"{type(self).__name__}(length={self.length})"


class IdentifyCommand(Command):
    def __init__(self, device_variant: int, device_type: int):
        data = bytes([device_variant & 0xFF, device_type & 0xFF]) + IDENTIFY_PASSWORD
        super().__init__(CommandType.IDENTIFY, data)


class EndCommand(Command):
    def __init__(self, do_reset: bool):
        super().__init__(CommandType.END, bytes([0x01 if do_reset else 0x00]))


class KeyCommand(Command):
    """
    Send a random seed and derive the session key locally.

    The seed length is clamped to 30-60 bytes. A seed may be injected for
    reproducible tests; otherwise a fresh random one is generated.
    """

    def __init__(
        self,
        unique_id: bytes,
        device_variant: int,
        seed_len: int = SEED_MAX_LEN,
        seed: Optional[bytes] = None,
    ):
        if seed is None:
            seed = generate_seed(clamp_seed_length(seed_len))
        super().__init__(CommandType.KEY, seed)
        self.key, self.key_checksum = derive_key(unique_id, device_variant, self.data)


class _FlashDataCommand(Command):
    """
    Offset + ciphered chunk layout shared by flash write and verify.

    Data: [ offset (4, little-endian) | reserved (1) | ciphertext ]
    Zero-length chunks are valid (used to flush the device's write buffer).
    """

    command_type: CommandType

    def __init__(self, offset: int, chunk: bytes, key: Optional[bytes]):
        chunk = bytes(chunk)
        if chunk and key:
            body = xor_crypt(chunk, key)
        else:
            body = bytes(len(chunk))
        data = struct.pack("<I", offset) + b"\x00" + body
        super().__init__(self.command_type, data)
        self.offset = offset
        self.chunk_len = len(chunk)


class FlashWriteCommand(_FlashDataCommand):
    command_type = CommandType.FLASH_WRITE


class FlashVerifyCommand(_FlashDataCommand):
    command_type = CommandType.FLASH_VERIFY


class FlashEraseCommand(Command):
    def __init__(self, sector_count: int):
        super().__init__(CommandType.FLASH_ERASE, struct.pack("<I", sector_count))


class ConfigReadCommand(Command):
    """Request every config group (mask 0x1F)."""

    def __init__(self):
        super().__init__(CommandType.CONFIG_READ, bytes([CONFIG_MASK_ALL, 0x00]))


class ConfigWriteCommand(Command):
    """
    Write RDPR/USER/DATA0/DATA1 (each with its complement) and WRPR0-3.

    Args:
        config: 8 option bytes in order RDPR, USER, DATA0, DATA1, WRPR0-3
    """

    def __init__(self, config: Sequence[int]):
        config = validate_config_bytes(config)
        data = bytearray(14)
        data[0] = CONFIG_WRITE_MASK
        for i, value in enumerate(config[:4]):
            data[2 + i * 2] = value
            data[3 + i * 2] = ~value & 0xFF
        data[10:14] = bytes(config[4:8])
        super().__init__(CommandType.CONFIG_WRITE, bytes(data))


def validate_config_bytes(config: Sequence[int]) -> bytes:
    """Check that config holds exactly 8 byte values."""
    values = list(config)
    if len(values) != CONFIG_BYTES_LEN:
        raise ValueError(f"Config must be {CONFIG_BYTES_LEN} bytes, got {len(values)}")
    for value in values:
        if not 0 <= int(value) <= 0xFF:
            raise ValueError(f"Config byte out of range: {value}")
    return bytes(int(v) for v in values)
