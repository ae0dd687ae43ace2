"""
Session key derivation and flash payload cipher.

The bootloader obfuscates flash payloads with a repeating 8-byte XOR key. Both
sides derive the key independently from a random seed sent by the host and
the chip's factory-programmed unique ID; the device reports a checksum of its
key so the host can confirm the two agree before any data is ciphered.
"""

from __future__ import annotations

import os
from typing import Tuple

SEED_MIN_LEN = 30
SEED_MAX_LEN = 60
KEY_LEN = 8


def byte_sum(data: bytes) -> int:
    """Simple 8-bit running sum of all bytes."""
    return sum(data) & 0xFF


def clamp_seed_length(length: int) -> int:
    """Clamp a requested seed length to the bootloader's accepted range."""
    return min(max(length, SEED_MIN_LEN), SEED_MAX_LEN)


def generate_seed(length: int = SEED_MAX_LEN) -> bytes:
    """Return a fresh random seed of clamped length."""
    return os.urandom(clamp_seed_length(length))


def derive_key(unique_id: bytes, variant: int, seed: bytes) -> Tuple[bytes, int]:
    """
    Derive the 8-byte session key from chip unique ID, variant and seed.

    The seed bytes picked for each key position depend on the seed length:
    with a = len // 5 and b = len // 7, key bytes 0-6 are the unique ID
    checksum XORed with seed[4b], seed[a], seed[b], seed[6b], seed[3b],
    seed[3a] and seed[5b]; key byte 7 is key[0] plus the device variant.

    Args:
        unique_id: Chip unique ID as read by config read (8 bytes)
        variant: Device variant byte reported by identify
        seed: Random seed sent in the key command (30-60 bytes)

    Returns:
        Tuple of (key, key_checksum)
    """
    seed_len = len(seed)
    if clamp_seed_length(seed_len) != seed_len:
        raise ValueError(
            f"Seed must be {SEED_MIN_LEN}-{SEED_MAX_LEN} bytes, got {seed_len}"
        )

    a = seed_len // 5
    b = seed_len // 7
    uid_sum = byte_sum(unique_id)

    key = bytearray(KEY_LEN)
    key[0] = uid_sum ^ seed[b * 4]
    key[1] = uid_sum ^ seed[a]
    key[2] = uid_sum ^ seed[b]
    key[3] = uid_sum ^ seed[b * 6]
    key[4] = uid_sum ^ seed[b * 3]
    key[5] = uid_sum ^ seed[a * 3]
    key[6] = uid_sum ^ seed[b * 5]
    key[7] = (key[0] + variant) & 0xFF

    return bytes(key), byte_sum(key)


def xor_crypt(data: bytes, key: bytes) -> bytes:
    """
    XOR encrypt/decrypt data with a repeating key.

    The transform is its own inverse, so the same call serves write and
    verify payloads.
    """
    if not key:
        raise ValueError("Key must not be empty")
    key_len = len(key)
    return bytes(byte ^ key[i % key_len] for i, byte in enumerate(data))
