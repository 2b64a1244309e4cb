"""
L402 macaroon identifier codec.

Layout (66 bytes):
    version (uint16, big-endian, always 0)
    subject id (32 random bytes)
    payment hash (32 raw bytes)
"""

from __future__ import annotations

import secrets
import struct
from dataclasses import dataclass

IDENTIFIER_VERSION = 0
SUBJECT_ID_LENGTH = 32
PAYMENT_HASH_LENGTH = 32
IDENTIFIER_LENGTH = 2 + SUBJECT_ID_LENGTH + PAYMENT_HASH_LENGTH


@dataclass(frozen=True)
class Identifier:
    """Decoded identifier fields."""
    version: int
    subject_id: bytes
    payment_hash: bytes


def encode_identifier(payment_hash: bytes) -> bytes:
    """
    Build the identifier for a new macaroon.

    Args:
        payment_hash: The invoice's payment hash as 32 raw bytes.

    Returns:
        66-byte identifier.
    """
    if not isinstance(payment_hash, (bytes, bytearray)) or len(payment_hash) != PAYMENT_HASH_LENGTH:
        raise ValueError("payment_hash must be exactly 32 bytes")

    subject_id = secrets.token_bytes(SUBJECT_ID_LENGTH)
    return struct.pack(">H", IDENTIFIER_VERSION) + subject_id + bytes(payment_hash)


def decode_identifier(raw: bytes) -> Identifier:
    """
    Split an identifier back into its fields.

    Raises:
        ValueError: wrong length or unsupported version.
    """
    if len(raw) != IDENTIFIER_LENGTH:
        raise ValueError(f"identifier must be {IDENTIFIER_LENGTH} bytes, got {len(raw)}")

    (version,) = struct.unpack(">H", raw[:2])
    if version != IDENTIFIER_VERSION:
        raise ValueError(f"unsupported identifier version {version}")

    return Identifier(
        version=version,
        subject_id=bytes(raw[2:2 + SUBJECT_ID_LENGTH]),
        payment_hash=bytes(raw[2 + SUBJECT_ID_LENGTH:]),
    )
