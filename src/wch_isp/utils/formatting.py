"""Formatting helpers for logs and CLI output."""

import re
from typing import Iterable, Iterator, Optional, Union
from urllib.parse import unquote

BYTE_UNITS = ["B", "KiB", "MiB"]

_FILENAME_RE = re.compile(r'filename=(?:"((?:[^"]|\\")+)"|([^ ;]+))(?:;|$)')
_FILENAME_EXT_RE = re.compile(r"filename\*=([\w-]+)'([\w-]*)'(.+?)(?:;|$)")


def hex_bytes(values: Union[int, Iterable[int]], sep: str = "") -> str:
    """Upper-case hex string of a byte or byte sequence."""
    if isinstance(values, int):
        return f"{values:02X}"
    return sep.join(f"{v:02X}" for v in values)


def byte_size(value: int) -> str:
    """Human-readable size in B/KiB/MiB (e.g. "64 KiB")."""
    exponent = 0
    scaled = float(value)
    while scaled >= 1024 and exponent < len(BYTE_UNITS) - 1:
        scaled /= 1024
        exponent += 1
    return f"{scaled:g} {BYTE_UNITS[exponent]}"


def content_disposition_filename(value: Optional[str]) -> Optional[str]:
    """
    Extract a file name from a Content-Disposition header value.

    An RFC 5987 encoded "filename*=" parameter takes priority over a plain or
    quoted "filename=" parameter. Returns None when neither is present.
    """
    if not value:
        return None

    match = _FILENAME_EXT_RE.search(value)
    if match and match.group(1) and match.group(3):
        try:
            return unquote(match.group(3), encoding=match.group(1), errors="strict")
        except (LookupError, UnicodeDecodeError):
            pass

    match = _FILENAME_RE.search(value)
    if match:
        if match.group(1):
            return re.sub(r"\\(.)", r"\1", match.group(1))
        if match.group(2):
            return match.group(2)

    return None


def printable_text(values: Iterable[int], non: str = ".") -> str:
    """Printable ASCII characters as-is, anything else as `non`."""
    return "".join(chr(v) if 0x20 <= v <= 0x7E else non for v in values)


def hex_listing(data: bytes, row_size: int = 16) -> Iterator[str]:
    """
    Yield hex dump lines of an image, two bytes per group.

    Example line:
        0x0000 6F00 0003 FFFF ...  o.......
    """
    offset_digits = len(f"{len(data):X}")
    for i in range(0, len(data), row_size):
        row = data[i:i + row_size]
        groups = " ".join(hex_bytes(row[j:j + 2]) for j in range(0, len(row), 2))
        yield f"0x{i:0{offset_digits}X} {groups.ljust(row_size * 2 + row_size // 2 - 1)}  {printable_text(row)}"
