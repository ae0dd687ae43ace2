"""
Growable output image shared by the firmware decoders.

The image starts at a minimum size pre-filled with the fill value. Writes past
the current end grow it, and only the newly added region is filled, so bytes
already written are never clobbered.
"""

from typing import Optional

from wch_isp.errors import MaximumSizeExceededError

DEFAULT_MAX_SIZE = 1048576
DEFAULT_MIN_SIZE = 64
DEFAULT_FILL = 0xFF


class GrowableBuffer:
    """Bounded, fill-on-grow byte image."""

    def __init__(
        self,
        min_size: int = DEFAULT_MIN_SIZE,
        max_size: int = DEFAULT_MAX_SIZE,
        fill: int = DEFAULT_FILL,
    ):
        if min_size > max_size:
            raise ValueError(f"Minimum size {min_size} exceeds maximum size {max_size}")
        self.max_size = max_size
        self.fill = fill & 0xFF
        self._buf = bytearray([self.fill]) * min_size

    def __len__(self) -> int:
        return len(self._buf)

    def ensure_capacity(self, new_len: int, fill: Optional[int] = None) -> None:
        """
        Grow to at least new_len bytes, filling only [old_len, new_len)
        with fill (default: the buffer's fill value).

        Raises:
            MaximumSizeExceededError: new_len is larger than max_size
        """
        old_len = len(self._buf)
        if new_len <= old_len:
            return
        if new_len > self.max_size:
            raise MaximumSizeExceededError(self.max_size)
        if fill is None:
            fill = self.fill
        self._buf.extend(bytes([fill & 0xFF]) * (new_len - old_len))

    def write(self, addr: int, data: bytes) -> None:
        """Place data at addr, growing the image as needed."""
        end = addr + len(data)
        self.ensure_capacity(end)
        self._buf[addr:end] = data

    def to_bytes(self) -> bytes:
        return bytes(self._buf)
