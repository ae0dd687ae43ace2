"""
Firmware image loading.

Handles:
- Picking a decoder by file extension (Intel HEX, S-Record, ELF)
- Falling back to raw binary for anything else
- Padding the image to a whole number of flash sectors
- Loading from a local path or an HTTP(S) URL
"""

import logging
import math
import os
from pathlib import Path
from typing import Dict, Iterable, Optional
from urllib.parse import unquote, urlparse

import requests

from wch_isp.errors import FirmwareDecodeError, FirmwareLoadError
from wch_isp.parsers import (
    DEFAULT_FILL,
    DEFAULT_MAX_SIZE,
    ElfRiscVParser,
    IntelHexParser,
    SRecordParser,
)
from wch_isp.utils.formatting import content_disposition_filename

logger = logging.getLogger(__name__)

FORMAT_UNKNOWN = "Unknown"
FORMAT_RAW = "Raw Binary"
UNKNOWN_NAME = "[unknown]"
DOWNLOAD_TIMEOUT = 30.0


class Firmware:
    """
    A firmware file and its decoded flat image.

    Example:
        fw = Firmware.from_file("blinky.hex")
        fw.parse()
        fw.fill_to_end_of_segment(1024)
        print(fw.format, fw.size, fw.sector_count(1024))
    """

    _parsers: Dict[str, type] = {}

    def __init__(self, data: bytes, name: str, max_size: int = DEFAULT_MAX_SIZE):
        self.data = bytes(data)
        self.name = name
        dot = name.rfind(".")
        self.extension = name[dot + 1:].lower() if dot >= 0 else ""
        self.format = FORMAT_UNKNOWN
        self.max_size = max_size
        self._bytes: Optional[bytes] = None

    @classmethod
    def add_parser(cls, extensions: Iterable[str], parser: type) -> None:
        """Register a decoder for the given file extensions."""
        for ext in extensions:
            cls._parsers[ext.strip().lower()] = parser

    @classmethod
    def parser_for(cls, extension: str) -> Optional[type]:
        return cls._parsers.get(extension.lower())

    def parse(self) -> bytes:
        """
        Decode the file into a flat image.

        Raises:
            FirmwareDecodeError: Empty file or decoder rejected the contents
            MaximumSizeExceededError: Decoded image is larger than max_size
        """
        if not self.data:
            raise FirmwareDecodeError("No data to parse; file is empty")

        parser = self.parser_for(self.extension)
        if parser is None:
            self._bytes = self.data
            self.format = FORMAT_RAW
        elif parser.for_text:
            text = self.data.decode("ascii", errors="replace")
            self._bytes = parser.parse(text, self.max_size)
            self.format = parser.format_name
        else:
            self._bytes = parser.parse(self.data, self.max_size)
            self.format = parser.format_name

        logger.info(f"Parsed {self.name} as {self.format}, {len(self._bytes):,} bytes")
        return self._bytes

    def _require_parsed(self) -> bytes:
        if self._bytes is None:
            raise FirmwareDecodeError("Firmware not parsed yet")
        return self._bytes

    def fill_to_end_of_segment(self, segment_size: int, fill: int = DEFAULT_FILL) -> None:
        """Pad the image with fill bytes up to a multiple of segment_size."""
        image = self._require_parsed()
        remainder = len(image) % segment_size
        if remainder:
            self._bytes = image + bytes([fill & 0xFF]) * (segment_size - remainder)

    def page_count(self, page_size: int) -> int:
        return math.ceil(self.size / page_size)

    def sector_count(self, sector_size: int) -> int:
        return math.ceil(self.size / sector_size)

    @property
    def size(self) -> int:
        return len(self._require_parsed())

    @property
    def bytes(self) -> bytes:
        return self._require_parsed()

    @classmethod
    def from_file(cls, path, max_size: int = DEFAULT_MAX_SIZE) -> "Firmware":
        """
        Read a firmware file from disk (not yet parsed).

        Raises:
            FirmwareLoadError: File cannot be read
        """
        path = Path(path)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FirmwareLoadError(f"Cannot read {path}: {e}") from e
        logger.debug(f"Read {len(data):,} bytes from {path}")
        return cls(data, path.name, max_size)

    @classmethod
    def from_url(
        cls,
        url: str,
        max_size: int = DEFAULT_MAX_SIZE,
        timeout: float = DOWNLOAD_TIMEOUT,
    ) -> "Firmware":
        """
        Download a firmware file over HTTP(S) (not yet parsed).

        The file name, which selects the decoder, comes from the
        Content-Disposition header when present, else the URL path.

        Raises:
            FirmwareLoadError: Request failed or server returned an error
        """
        logger.info(f"Downloading firmware from {url}")
        try:
            resp = requests.get(url, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise FirmwareLoadError(f"Error fetching firmware from \"{url}\": {e}") from e

        name = content_disposition_filename(resp.headers.get("Content-Disposition"))
        if not name:
            name = os.path.basename(unquote(urlparse(resp.url or url).path)) or UNKNOWN_NAME

        logger.debug(f"Downloaded {len(resp.content):,} bytes as {name}")
        return cls(resp.content, name, max_size)


Firmware.add_parser(["hex", "ihx"], IntelHexParser)
Firmware.add_parser(["srec", "s19", "s28", "s37"], SRecordParser)
Firmware.add_parser(["elf"], ElfRiscVParser)
