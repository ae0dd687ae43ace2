"""
Centralized parsing helpers for byte values, option bytes and USB IDs.

Front ends import these helpers rather than re-implementing them.
"""

import re
from typing import List, Optional, Tuple

from wch_isp.protocol.commands import CONFIG_BYTES_LEN


def parse_byte(value: str) -> int:
    """
    Parse a single byte value.

    Accepts:
        - Decimal: "165"
        - Hex with 0x prefix: "0xA5"
        - Hex with h suffix: "A5h"

    Raises:
        ValueError: If value cannot be parsed or is outside 0-255.
    """
    text = value.strip()
    try:
        if text.lower().startswith("0x"):
            number = int(text, 16)
        elif text.lower().endswith("h"):
            number = int(text[:-1], 16)
        else:
            number = int(text)
    except ValueError:
        raise ValueError(f"Invalid byte value '{value}'. Use decimal (165), hex (0xA5) or suffix (A5h).")
    if not 0 <= number <= 0xFF:
        raise ValueError(f"Byte value out of range: '{value}'")
    return number


def parse_config_bytes(value: str) -> List[int]:
    """
    Parse option bytes given as 8 values separated by spaces or commas.

    Bare two-digit values are read as hex, matching how option bytes are
    normally written (e.g. "A5 3F FF FF FF FF FF FF"). Prefixed forms from
    parse_byte() also work.

    Returns:
        [RDPR, USER, DATA0, DATA1, WRPR0, WRPR1, WRPR2, WRPR3]

    Raises:
        ValueError: Wrong count or unparseable value
    """
    parts = [p for p in re.split(r"[\s,]+", value.strip()) if p]
    if len(parts) != CONFIG_BYTES_LEN:
        raise ValueError(f"Expected {CONFIG_BYTES_LEN} option bytes, got {len(parts)}")

    config = []
    for part in parts:
        if re.fullmatch(r"[0-9a-fA-F]{2}", part):
            config.append(int(part, 16))
        else:
            config.append(parse_byte(part))
    return config


def parse_vid_pid(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """
    Parse a "VID:PID" pair of hex numbers (e.g. "1A86:55E0").

    Returns:
        (vid, pid), or None if value is None or empty.

    Raises:
        ValueError: If value is not two 16-bit hex numbers.
    """
    if value is None or not value.strip():
        return None
    match = re.fullmatch(r"\s*(?:0x)?([0-9a-fA-F]{1,4}):(?:0x)?([0-9a-fA-F]{1,4})\s*", value)
    if not match:
        raise ValueError(f"Invalid USB ID '{value}'. Use VID:PID in hex, e.g. 1A86:55E0.")
    return int(match.group(1), 16), int(match.group(2), 16)
