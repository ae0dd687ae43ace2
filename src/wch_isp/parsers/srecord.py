"""
Motorola S-Record decoder.

Record layout: 'S', a type digit, then hex digit pairs:
    [ count (1) | address (2/3/4, big-endian) | data | checksum (1) ]

count covers address, data and checksum. S1/S2/S3 carry data; S7/S8/S9
terminate the file; S0/S4/S5/S6 are skipped.
"""

import re
import struct

from wch_isp.errors import FirmwareDecodeError
from wch_isp.parsers.buffer import (
    DEFAULT_FILL,
    DEFAULT_MAX_SIZE,
    DEFAULT_MIN_SIZE,
    GrowableBuffer,
)

MIN_RECORD_LEN = 10

_HEX_PAIR = re.compile(r"[0-9a-f]{2}", re.IGNORECASE)
_LINE_SPLIT = re.compile(r"\r\n|\r|\n")

DATA_RECORDS = {1, 2, 3}
IGNORED_RECORDS = {0, 4, 5, 6}
TERMINATION_RECORDS = {7, 8, 9}


def record_checksum(record: bytes) -> int:
    """One's complement of the low byte of the sum."""
    return 0xFF - (sum(record) % 256)


def _data_address(rec_type: int, record: bytes):
    """Return (address, data) for an S1/S2/S3 record."""
    if rec_type == 1:
        (addr,) = struct.unpack_from(">H", record, 1)
        return addr, record[3:-1]
    if rec_type == 2:
        # 24-bit address: read 32 bits and drop the first data byte.
        (addr,) = struct.unpack_from(">I", record, 1)
        return addr >> 8, record[4:-1]
    (addr,) = struct.unpack_from(">I", record, 1)
    return addr, record[5:-1]


class SRecordParser:
    for_text = True
    format_name = "S-Record"

    @staticmethod
    def parse(
        text: str,
        max_size: int = DEFAULT_MAX_SIZE,
        min_size: int = DEFAULT_MIN_SIZE,
        fill: int = DEFAULT_FILL,
    ) -> bytes:
        """
        Decode S-Record text into a flat image starting at address 0.

        Raises:
            FirmwareDecodeError: Malformed record or missing termination
                record (messages carry the 1-based line number)
            MaximumSizeExceededError: Image would grow past max_size
        """
        output = GrowableBuffer(min_size, max_size, fill)
        eof = False
        idx = 0

        for idx, line in enumerate(_LINE_SPLIT.split(text), start=1):
            if not line:
                continue

            if len(line) < MIN_RECORD_LEN or line[0] != "S":
                raise FirmwareDecodeError(f"Non-record or incomplete record on line {idx}")

            rec_type = ord(line[1]) - 0x30
            record = bytes(int(pair, 16) for pair in _HEX_PAIR.findall(line[2:]))

            if not 0 <= rec_type <= 9:
                raise FirmwareDecodeError(f"Invalid record type on line {idx}")
            if len(record) < 2 or record[0] != len(record) - 1:
                raise FirmwareDecodeError(f"Byte count and length of data mismatch on line {idx}")
            if record_checksum(record[:-1]) != record[-1]:
                raise FirmwareDecodeError(f"Checksum mismatch on line {idx}")

            if rec_type in IGNORED_RECORDS:
                continue
            if rec_type in DATA_RECORDS:
                if len(record) < rec_type + 3:
                    raise FirmwareDecodeError(f"Byte count and length of data mismatch on line {idx}")
                addr, data = _data_address(rec_type, record)
                output.write(addr, data)
            elif rec_type in TERMINATION_RECORDS:
                eof = True
                break

        if not eof:
            raise FirmwareDecodeError(
                f"Unexpected end of file (missing termination record) on line {idx}"
            )

        return output.to_bytes()
