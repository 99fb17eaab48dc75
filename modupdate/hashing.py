"""Content identifiers used to look up local mod files on the registries.

Modrinth is queried by the SHA-1 digest of the exact file bytes. CurseForge
is queried by a 32-bit MurmurHash2 fingerprint computed over the file with
whitespace bytes (tab, LF, CR, space) removed first, so two files that only
differ in incidental whitespace fingerprint identically.
"""

from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 1024 * 1024

MURMUR_M = 0x5BD1E995
MURMUR_R = 24
MURMUR_SEED = 1
_MASK = 0xFFFFFFFF

WHITESPACE_BYTES = b"\x09\x0a\x0d\x20"

# murmur2(b""): h = 1 ^ 0 run through the final avalanche only
EMPTY_FINGERPRINT = 0x5BD15E36


def digest(path: Path) -> str:
    sha = hashlib.sha1()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            sha.update(chunk)
    return sha.hexdigest()


def murmur2(data: bytes, seed: int = MURMUR_SEED) -> int:
    """32-bit MurmurHash2 as CurseForge computes it; returns an unsigned int."""
    length = len(data)
    h = (seed ^ length) & _MASK

    i = 0
    tail = length - (length % 4)
    while i < tail:
        k = data[i] | (data[i + 1] << 8) | (data[i + 2] << 16) | (data[i + 3] << 24)
        k = (k * MURMUR_M) & _MASK
        k ^= k >> MURMUR_R
        k = (k * MURMUR_M) & _MASK

        h = (h * MURMUR_M) & _MASK
        h ^= k
        i += 4

    remaining = length - i
    if remaining >= 3:
        h ^= data[i + 2] << 16
    if remaining >= 2:
        h ^= data[i + 1] << 8
    if remaining >= 1:
        h ^= data[i]
        h = (h * MURMUR_M) & _MASK

    h ^= h >> 13
    h = (h * MURMUR_M) & _MASK
    h ^= h >> 15
    return h


def strip_whitespace(data: bytes) -> bytes:
    return data.translate(None, WHITESPACE_BYTES)


def fingerprint_bytes(data: bytes) -> int:
    return murmur2(strip_whitespace(data))


def fingerprint(path: Path) -> int:
    normalized = bytearray()
    with Path(path).open("rb") as handle:
        for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
            normalized += strip_whitespace(chunk)
    return murmur2(bytes(normalized))
