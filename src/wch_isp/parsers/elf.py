"""
ELF32 RISC-V executable loader.

Only 32-bit little-endian RISC-V executables are accepted. Every PT_LOAD
segment with file data is placed at its physical address in the output image;
all other segments are ignored.
"""

import struct

from wch_isp.errors import FirmwareDecodeError
from wch_isp.parsers.buffer import (
    DEFAULT_FILL,
    DEFAULT_MAX_SIZE,
    DEFAULT_MIN_SIZE,
    GrowableBuffer,
)

ELF_MAGIC = 0x7F454C46  # 0x7F, 'E', 'L', 'F'
ELF_CLASS_32BIT = 1
ELF_DATA_LITTLE_ENDIAN = 1
ELF_IDENT_VERSION_V1 = 1
ELF_TYPE_EXECUTABLE = 2
ELF_MACHINE_RISCV = 0xF3
ELF_VERSION_V1 = 1
ELF_SEGMENT_TYPE_LOAD = 1
ELF_HEADER_SIZE = 52
ELF_PROGRAM_HEADER_SIZE = 32


def _check_header(buf: bytes) -> None:
    if len(buf) < ELF_HEADER_SIZE:
        raise FirmwareDecodeError("Not an ELF file; too short for an ELF header")

    (magic,) = struct.unpack_from(">I", buf, 0)
    if magic != ELF_MAGIC:
        raise FirmwareDecodeError("Not an ELF file; non-matching magic bytes")
    if buf[4] != ELF_CLASS_32BIT:
        raise FirmwareDecodeError("ELF must be 32-bit; 64-bit unsupported")
    if buf[5] != ELF_DATA_LITTLE_ENDIAN:
        raise FirmwareDecodeError("ELF must be in little-endian format; big-endian unsupported")
    if buf[6] != ELF_IDENT_VERSION_V1:
        raise FirmwareDecodeError("ELF ident version must be 1")

    e_type, e_machine, e_version = struct.unpack_from("<HHI", buf, 16)
    if e_type != ELF_TYPE_EXECUTABLE:
        raise FirmwareDecodeError("ELF object type is not executable")
    if e_machine != ELF_MACHINE_RISCV:
        raise FirmwareDecodeError("ELF machine ISA is not RISC-V")
    if e_version != ELF_VERSION_V1:
        raise FirmwareDecodeError("ELF version must be 1")

    (e_ehsize,) = struct.unpack_from("<H", buf, 40)
    if e_ehsize != ELF_HEADER_SIZE:
        raise FirmwareDecodeError(f"ELF header size is unusual; not {ELF_HEADER_SIZE} bytes")


class ElfRiscVParser:
    for_text = False
    format_name = "ELF"

    @staticmethod
    def parse(
        data: bytes,
        max_size: int = DEFAULT_MAX_SIZE,
        min_size: int = DEFAULT_MIN_SIZE,
        fill: int = DEFAULT_FILL,
    ) -> bytes:
        """
        Load the PT_LOAD segments of an ELF32 RISC-V executable.

        Raises:
            FirmwareDecodeError: Not a suitable ELF file or bad header tables
            MaximumSizeExceededError: Image would grow past max_size
        """
        buf = bytes(data)
        _check_header(buf)

        (ph_offset,) = struct.unpack_from("<I", buf, 28)
        ph_size, ph_count = struct.unpack_from("<HH", buf, 42)

        if ph_size != ELF_PROGRAM_HEADER_SIZE:
            raise FirmwareDecodeError(
                f"Unusual program header table entry size; not {ELF_PROGRAM_HEADER_SIZE} bytes"
            )
        if ph_count == 0:
            raise FirmwareDecodeError("Program header table entry count is zero")
        if ph_offset < ELF_HEADER_SIZE or ph_offset + ph_size * ph_count > len(buf):
            raise FirmwareDecodeError("Invalid program header table offset")

        output = GrowableBuffer(min_size, max_size, fill)

        for i in range(ph_count):
            p_type, p_offset, _vaddr, p_paddr, p_filesz = struct.unpack_from(
                "<5I", buf, ph_offset + i * ph_size
            )

            # Non-loadable segments and those without file data (e.g. .bss)
            # have nothing to flash.
            if p_type != ELF_SEGMENT_TYPE_LOAD or p_filesz == 0:
                continue

            if p_offset >= len(buf):
                raise FirmwareDecodeError("Invalid segment offset; past end of file")
            segment = buf[p_offset:p_offset + p_filesz]
            if len(segment) != p_filesz:
                raise FirmwareDecodeError("Invalid segment size; past end of file")

            output.write(p_paddr, segment)

        return output.to_bytes()
