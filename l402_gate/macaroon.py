"""
Macaroon issuance and verification for L402.

A macaroon is a bearer credential with embedded caveats. The signature is a
chained HMAC: it starts from the root key and the identifier, and each
first-party caveat string is folded in, in order. Anyone can append a caveat;
nobody without the root key can remove or alter one.

Every macaroon issued here carries, in this order:
    payment_hash = <base64 of the 32-byte hash>
    expiration = <epoch milliseconds>
followed by any caller caveats.

Serialization is the standard macaroon V1 (base64url) format via pymacaroons.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Union

from pymacaroons import Macaroon, Verifier

from .caveats import (
    Caveat,
    CaveatKind,
    expiration_caveat,
    parse_caveat,
    payment_hash_caveat,
    serialize_caveat,
)
from .errors import CaveatFormatError, RejectReason
from .identifier import encode_identifier

logger = logging.getLogger(__name__)

DEFAULT_LOCATION = "https://localhost:3000"
MIN_SECRET_LENGTH = 16

_HEX_RE = re.compile(r"[0-9a-fA-F]+")

SecretKey = Union[bytes, str]


@dataclass
class IssuedMacaroon:
    """A freshly signed macaroon."""
    raw: str                       # base64url V1 serialization (the wire format)
    macaroon: Macaroon
    identifier: bytes              # the 66-byte L402 identifier
    caveats: List[Caveat]
    payment_hash: bytes
    expires_at: int                # epoch ms


@dataclass
class VerifyResult:
    """Result of macaroon verification."""
    valid: bool
    caveats: List[Caveat] = field(default_factory=list)
    payment_hash: Optional[bytes] = None
    expires_at: Optional[int] = None
    reason: Optional[RejectReason] = None
    error: Optional[str] = None

    @property
    def payment_hash_hex(self) -> Optional[str]:
        return self.payment_hash.hex() if self.payment_hash is not None else None


def _secret_bytes(secret_key: SecretKey) -> bytes:
    if isinstance(secret_key, str):
        return secret_key.encode("utf-8")
    return bytes(secret_key)


def _root_key(secret_key: SecretKey) -> str:
    # Hex form keeps tokens compatible with macaroons.js-based L402 servers
    return _secret_bytes(secret_key).hex()


def _payment_hash_bytes(payment_hash: Union[bytes, str]) -> bytes:
    if isinstance(payment_hash, str):
        try:
            payment_hash = bytes.fromhex(payment_hash)
        except ValueError as e:
            raise ValueError("payment_hash must be hex text or 32 raw bytes") from e
    if len(payment_hash) != 32:
        raise ValueError("payment_hash must be exactly 32 bytes")
    return bytes(payment_hash)


def create_macaroon(
    secret_key: SecretKey,
    payment_hash: Union[bytes, str],
    expires_at: int,
    caveats: Sequence[Caveat] = (),
    location: str = DEFAULT_LOCATION,
) -> IssuedMacaroon:
    """
    Create and sign a new L402 macaroon.

    Args:
        secret_key: Root key the signature chain starts from.
        payment_hash: Invoice payment hash (32 raw bytes or 64 hex chars).
        expires_at: Absolute deadline in Unix epoch milliseconds.
        caveats: Caller caveats, appended after the mandatory two.
        location: Location hint stored in the macaroon.

    Returns:
        IssuedMacaroon with the wire serialization in `raw`.
    """
    if not secret_key:
        raise ValueError("Macaroon secret is required")

    hash_bytes = _payment_hash_bytes(payment_hash)
    identifier = encode_identifier(hash_bytes)

    all_caveats: List[Caveat] = [
        payment_hash_caveat(hash_bytes),
        Caveat(CaveatKind.EXPIRATION, int(expires_at)),
    ]
    all_caveats.extend(caveats)

    macaroon = Macaroon(
        location=location,
        identifier=base64.b64encode(identifier).decode("ascii"),
        key=_root_key(secret_key),
    )
    for caveat in all_caveats:
        macaroon.add_first_party_caveat(serialize_caveat(caveat))

    return IssuedMacaroon(
        raw=macaroon.serialize(),
        macaroon=macaroon,
        identifier=identifier,
        caveats=all_caveats,
        payment_hash=hash_bytes,
        expires_at=int(expires_at),
    )


def decode_macaroon(raw: str) -> Optional[Macaroon]:
    """
    Deserialize a macaroon without checking it.

    Returns:
        Macaroon or None if decoding fails.
    """
    if not raw or not isinstance(raw, str):
        return None
    try:
        return Macaroon.deserialize(raw)
    except Exception:
        return None


def _caveat_text(caveat: object) -> str:
    caveat_id = getattr(caveat, "caveat_id", "")
    if isinstance(caveat_id, bytes):
        return caveat_id.decode("utf-8")
    return str(caveat_id)


def _reject(
    reason: RejectReason,
    error: str,
    caveats: Optional[List[Caveat]] = None,
    payment_hash: Optional[bytes] = None,
) -> VerifyResult:
    return VerifyResult(
        valid=False,
        caveats=caveats or [],
        payment_hash=payment_hash,
        reason=reason,
        error=error,
    )


def verify_macaroon(
    raw: str,
    secret_key: SecretKey,
    location: Optional[str] = None,
) -> VerifyResult:
    """
    Verify a serialized macaroon's signature and structure.

    Every caveat string on the token is satisfied exactly, so this checks the
    chained signature only; whether the caveats hold for a request is the
    caveat engine's job. Never raises.

    Args:
        raw: Serialized macaroon.
        secret_key: Root key it should have been signed with.
        location: If given, the macaroon's location must match.

    Returns:
        VerifyResult with the parsed caveats, payment hash and expiration.
    """
    macaroon = decode_macaroon(raw)
    if macaroon is None:
        return _reject(RejectReason.MALFORMED_TOKEN, "Macaroon could not be decoded")

    try:
        packets = list(macaroon.caveats)
        if any(not c.first_party() for c in packets):
            return _reject(RejectReason.MALFORMED_TOKEN, "Third-party caveats are not supported")
        caveat_strings = [_caveat_text(c) for c in packets]
    except (AttributeError, UnicodeDecodeError):
        return _reject(RejectReason.MALFORMED_TOKEN, "Macaroon caveats could not be read")

    if location is not None and macaroon.location != location:
        return _reject(RejectReason.SIGNATURE_INVALID, "Macaroon location mismatch")

    verifier = Verifier()
    for caveat_str in caveat_strings:
        verifier.satisfy_exact(caveat_str)

    try:
        verifier.verify(macaroon, _root_key(secret_key))
    except Exception:
        return _reject(RejectReason.SIGNATURE_INVALID, "Invalid macaroon signature")

    try:
        caveats = [parse_caveat(s) for s in caveat_strings]
    except CaveatFormatError as e:
        return _reject(RejectReason.MALFORMED_TOKEN, str(e))

    hash_caveats = [c for c in caveats if c.kind == CaveatKind.PAYMENT_HASH]
    if len(hash_caveats) != 1:
        return _reject(
            RejectReason.MISSING_CAVEAT,
            "Macaroon must carry exactly one payment_hash caveat",
            caveats=caveats,
        )
    payment_hash = hash_caveats[0].value

    expirations = [c for c in caveats if c.kind == CaveatKind.EXPIRATION]
    if not expirations:
        return _reject(
            RejectReason.MISSING_CAVEAT,
            "Macaroon has no expiration caveat",
            caveats=caveats,
            payment_hash=payment_hash,
        )

    return VerifyResult(
        valid=True,
        caveats=caveats,
        payment_hash=payment_hash,
        expires_at=expirations[0].value,
    )


def hash_preimage(preimage: str) -> bytes:
    """
    SHA-256 of a presented preimage.

    Even-length hex text is hashed as the bytes it encodes; anything else is
    hashed as its UTF-8 text.
    """
    if _HEX_RE.fullmatch(preimage) and len(preimage) % 2 == 0:
        data = bytes.fromhex(preimage)
    else:
        data = preimage.encode("utf-8")
    return hashlib.sha256(data).digest()


def verify_preimage(preimage: Optional[str], payment_hash: Union[bytes, str, None]) -> bool:
    """
    Verify that a preimage matches a payment hash.
    payment_hash = SHA256(preimage)

    Args:
        preimage: Hex-encoded (or plain text) preimage.
        payment_hash: 32 raw bytes or hex-encoded payment hash.

    Returns:
        True if SHA256(preimage) == payment_hash.
    """
    if not preimage or not payment_hash:
        return False
    try:
        expected = _payment_hash_bytes(payment_hash)
    except ValueError:
        return False
    return hmac.compare_digest(hash_preimage(preimage), expected)


class TokenEngine:
    """Issue/verify bound to one root key and location."""

    def __init__(
        self,
        secret_key: SecretKey,
        location: str = DEFAULT_LOCATION,
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise ValueError("Macaroon secret is required")
        self.secret_key = _secret_bytes(secret_key)
        self.location = location
        self.clock = clock

    def issue(
        self,
        payment_hash: Union[bytes, str],
        validity_seconds: int,
        caveats: Sequence[Caveat] = (),
    ) -> IssuedMacaroon:
        expires_at = expiration_caveat(validity_seconds, now=self.clock()).value
        issued = create_macaroon(
            self.secret_key,
            payment_hash,
            expires_at,
            caveats=caveats,
            location=self.location,
        )
        logger.debug("Issued macaroon for payment %s…", issued.payment_hash.hex()[:12])
        return issued

    def verify(self, raw: str) -> VerifyResult:
        return verify_macaroon(raw, self.secret_key, location=self.location)
