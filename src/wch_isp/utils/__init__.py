"""Shared helpers (key derivation, payload cipher, formatting)."""

from .crypto import (
    byte_sum,
    clamp_seed_length,
    derive_key,
    generate_seed,
    xor_crypt,
)
from .formatting import (
    hex_bytes,
    byte_size,
    content_disposition_filename,
    printable_text,
    hex_listing,
)

__all__ = [
    "byte_sum",
    "clamp_seed_length",
    "derive_key",
    "generate_seed",
    "xor_crypt",
    "hex_bytes",
    "byte_size",
    "content_disposition_filename",
    "printable_text",
    "hex_listing",
]
