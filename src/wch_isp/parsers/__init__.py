"""Firmware image decoders - Intel HEX, S-Record and ELF."""

from .buffer import GrowableBuffer, DEFAULT_MAX_SIZE, DEFAULT_MIN_SIZE, DEFAULT_FILL
from .intelhex import IntelHexParser
from .srecord import SRecordParser
from .elf import ElfRiscVParser

__all__ = [
    "GrowableBuffer",
    "DEFAULT_MAX_SIZE",
    "DEFAULT_MIN_SIZE",
    "DEFAULT_FILL",
    "IntelHexParser",
    "SRecordParser",
    "ElfRiscVParser",
]
