"""
hashing.py — SHA-256 Hashing and Canonical Encoding
======================================================
Provides SHA-256 hashing plus the canonical, length-prefixed
encodings every binding, signature payload and chain state is
built from. Length prefixes make concatenations unambiguous:
``enc(a) || enc(b)`` can never collide with ``enc(a') || enc(b')``
for a different split of the same bytes.
"""

import hashlib
import logging
import struct

logger = logging.getLogger(__name__)

DIGEST_SIZE = 32


def sha256_hash(data: bytes) -> str:
    """
    Compute the SHA-256 hash of the given data.

    Args:
        data: Raw bytes to hash.

    Returns:
        Hexadecimal string of the SHA-256 digest (64 characters).

    Raises:
        TypeError: If data is not bytes.
    """
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"Expected bytes, got {type(data).__name__}")

    digest = hashlib.sha256(data).hexdigest()
    logger.debug("SHA-256: %s... (%d bytes)", digest[:16], len(data))
    return digest


def sha256_digest(*parts: bytes) -> bytes:
    """SHA-256 over the plain concatenation of ``parts`` (32 raw bytes)."""
    h = hashlib.sha256()
    for part in parts:
        h.update(part)
    return h.digest()


def canonical_bytes(data: bytes) -> bytes:
    """Length-prefixed bytes: 4-byte big-endian length + data."""
    return struct.pack(">I", len(data)) + bytes(data)


def canonical_str(s: str) -> bytes:
    """UTF-8 encoded, length-prefixed string."""
    return canonical_bytes(s.encode("utf-8"))


def canonical_int(val: int, byte_length: int = 8) -> bytes:
    """Fixed-width big-endian unsigned integer."""
    return val.to_bytes(byte_length, "big")


def tagged_hash(tag: str, *parts: bytes) -> bytes:
    """
    Domain-separated SHA-256.

    The tag is hashed first so that digests produced for one purpose
    (e.g. the chain seed) can never be replayed as another (e.g. a
    transform key).
    """
    h = hashlib.sha256()
    h.update(canonical_str(tag))
    for part in parts:
        h.update(canonical_bytes(part))
    return h.digest()
