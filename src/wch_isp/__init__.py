"""
WCH ISP - Flasher for WCH RISC-V microcontrollers via the factory ISP bootloader

Serial and USB transports, firmware decoding (Intel HEX, S-Record, ELF) and
the complete erase/write/verify/configure workflow.
"""

__version__ = "0.1.0"

from wch_isp.protocol import Session
from wch_isp.firmware import Firmware

__all__ = [
    "Session",
    "Firmware",
    "__version__",
]
