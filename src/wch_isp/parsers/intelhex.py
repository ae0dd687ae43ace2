"""
Intel HEX decoder.

Record layout (hex digit pairs after the ':' start code):
    [ count (1) | address (2, big-endian) | type (1) | data (count) | checksum (1) ]

Supported record types: data (0), end of file (1), extended linear address
(4), start linear address (5, ignored). Segment addressing (2, 3) is rejected.
"""

import re
import struct
from enum import IntEnum

from wch_isp.errors import FirmwareDecodeError
from wch_isp.parsers.buffer import (
    DEFAULT_FILL,
    DEFAULT_MAX_SIZE,
    DEFAULT_MIN_SIZE,
    GrowableBuffer,
)

MIN_RECORD_LEN = 11

_HEX_PAIR = re.compile(r"[0-9a-f]{2}", re.IGNORECASE)
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")


class IntelHexRecordType(IntEnum):
    DATA = 0
    END_OF_FILE = 1
    EXT_SEGMENT_ADDR = 2
    START_SEGMENT_ADDR = 3
    EXT_LINEAR_ADDR = 4
    START_LINEAR_ADDR = 5


_RECORD_TYPES = {t.value for t in IntelHexRecordType}


def record_checksum(record: bytes) -> int:
    """Two's complement of the byte sum."""
    return (~sum(record) + 1) & 0xFF


class IntelHexParser:
    for_text = True
    format_name = "Intel Hex"

    @staticmethod
    def parse(
        text: str,
        max_size: int = DEFAULT_MAX_SIZE,
        min_size: int = DEFAULT_MIN_SIZE,
        fill: int = DEFAULT_FILL,
    ) -> bytes:
        """
        Decode Intel HEX text into a flat image starting at address 0.

        Raises:
            FirmwareDecodeError: Malformed record, unsupported record type or
                missing EOF record (messages carry the 1-based line number)
            MaximumSizeExceededError: Image would grow past max_size
        """
        output = GrowableBuffer(min_size, max_size, fill)
        addr_base = 0
        eof = False
        idx = 0

        for idx, line in enumerate(_LINE_SPLIT.split(text), start=1):
            if not line:
                continue

            if len(line) < MIN_RECORD_LEN or line[0] != ":":
                raise FirmwareDecodeError(f"Non-record or incomplete record on line {idx}")

            record = bytes(int(pair, 16) for pair in _HEX_PAIR.findall(line))
            if len(record) < 5:
                raise FirmwareDecodeError(f"Non-record or incomplete record on line {idx}")
            count = record[0]
            (addr,) = struct.unpack_from(">H", record, 1)
            rec_type = record[3]
            data = record[4:-1]

            if count != len(data):
                raise FirmwareDecodeError(f"Byte count and length of data mismatch on line {idx}")
            if rec_type not in _RECORD_TYPES:
                raise FirmwareDecodeError(f"Invalid record type on line {idx}")
            if record_checksum(record[:-1]) != record[-1]:
                raise FirmwareDecodeError(f"Checksum mismatch on line {idx}")

            if rec_type == IntelHexRecordType.DATA:
                output.write(addr_base + addr, data)
            elif rec_type == IntelHexRecordType.END_OF_FILE:
                eof = True
                break
            elif rec_type == IntelHexRecordType.EXT_SEGMENT_ADDR:
                raise FirmwareDecodeError("Extended Segment Address record type not supported")
            elif rec_type == IntelHexRecordType.START_SEGMENT_ADDR:
                raise FirmwareDecodeError("Start Segment Address record type not supported")
            elif rec_type == IntelHexRecordType.EXT_LINEAR_ADDR:
                # Upper 16 bits of every subsequent record's address.
                if len(data) < 2:
                    raise FirmwareDecodeError(f"Byte count and length of data mismatch on line {idx}")
                (upper,) = struct.unpack_from(">H", record, 4)
                addr_base = upper << 16
            # START_LINEAR_ADDR: entry point, not needed for flashing

        if not eof:
            raise FirmwareDecodeError(f"Unexpected end of file (missing EOF record) on line {idx}")

        return output.to_bytes()
