"""Tests for the macaroon (token engine) module."""

import base64
import hashlib
import time

import pytest
from pymacaroons import Macaroon

from l402_gate.caveats import CaveatKind, method_caveat, path_caveat
from l402_gate.errors import RejectReason
from l402_gate.identifier import decode_identifier
from l402_gate.macaroon import (
    DEFAULT_LOCATION,
    TokenEngine,
    create_macaroon,
    decode_macaroon,
    hash_preimage,
    verify_macaroon,
    verify_preimage,
)


SECRET = b"test-secret-key-for-hmac-signing"
PREIMAGE = "deadbeef" * 8
PAYMENT_HASH = hashlib.sha256(bytes.fromhex(PREIMAGE)).digest()


def future_ms(seconds=3600):
    return int((time.time() + seconds) * 1000)


def flip_char(raw, index):
    replacement = "A" if raw[index] != "A" else "B"
    return raw[:index] + replacement + raw[index + 1:]


class TestCreateMacaroon:
    def test_mandatory_caveats_come_first(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, 1700000000000)
        caveat_ids = [c.caveat_id for c in issued.macaroon.caveats]
        assert caveat_ids == [
            "payment_hash = " + base64.b64encode(PAYMENT_HASH).decode(),
            "expiration = 1700000000000",
        ]

    def test_caller_caveats_follow_in_order(self):
        issued = create_macaroon(
            SECRET,
            PAYMENT_HASH,
            1700000000000,
            caveats=[path_caveat("/api/protected/*"), method_caveat("GET")],
        )
        caveat_ids = [c.caveat_id for c in issued.macaroon.caveats]
        assert caveat_ids[2:] == ["path = /api/protected/*", "method = GET"]

    def test_identifier_embeds_payment_hash(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, 1700000000000)
        raw_identifier = base64.b64decode(issued.macaroon.identifier)
        assert raw_identifier == issued.identifier
        assert decode_identifier(raw_identifier).payment_hash == PAYMENT_HASH

    def test_accepts_hex_payment_hash(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH.hex(), 1700000000000)
        assert issued.payment_hash == PAYMENT_HASH

    def test_default_location(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, 1700000000000)
        assert issued.macaroon.location == DEFAULT_LOCATION == "https://localhost:3000"

    def test_requires_secret(self):
        with pytest.raises(ValueError, match="secret is required"):
            create_macaroon(b"", PAYMENT_HASH, 1700000000000)

    def test_requires_32_byte_payment_hash(self):
        with pytest.raises(ValueError, match="32 bytes"):
            create_macaroon(SECRET, b"\x00" * 16, 1700000000000)

    def test_rejects_non_hex_text_hash(self):
        with pytest.raises(ValueError):
            create_macaroon(SECRET, "not-hex", 1700000000000)


class TestVerifyMacaroon:
    def test_roundtrip_is_valid(self):
        issued = create_macaroon(
            SECRET, PAYMENT_HASH, future_ms(), caveats=[path_caveat("/api/*")]
        )
        result = verify_macaroon(issued.raw, SECRET)
        assert result.valid is True
        assert result.payment_hash == PAYMENT_HASH
        assert result.payment_hash_hex == PAYMENT_HASH.hex()
        assert result.expires_at == issued.expires_at
        assert [c.kind for c in result.caveats] == [
            CaveatKind.PAYMENT_HASH,
            CaveatKind.EXPIRATION,
            CaveatKind.PATH,
        ]

    def test_does_not_evaluate_caveats(self):
        """Signature check only: an expired token is still authentic."""
        issued = create_macaroon(SECRET, PAYMENT_HASH, 1)
        assert verify_macaroon(issued.raw, SECRET).valid is True

    def test_wrong_secret_fails(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms())
        result = verify_macaroon(issued.raw, b"another-secret-key-32-bytes-long")
        assert result.valid is False
        assert result.reason == RejectReason.SIGNATURE_INVALID

    @pytest.mark.parametrize("position", [0.33, 0.5, 0.75])
    def test_single_character_change_fails(self, position):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms(), caveats=[method_caveat("GET")])
        tampered = flip_char(issued.raw, int(len(issued.raw) * position))
        assert verify_macaroon(tampered, SECRET).valid is False

    def test_location_mismatch_fails(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms(), location="https://a.example")
        assert verify_macaroon(issued.raw, SECRET, location="https://a.example").valid is True
        assert verify_macaroon(issued.raw, SECRET, location="https://b.example").valid is False

    def test_empty_token(self):
        result = verify_macaroon("", SECRET)
        assert result.valid is False
        assert result.reason == RejectReason.MALFORMED_TOKEN

    @pytest.mark.parametrize("raw", ["garbage", "!!!!", "L402", "a.b.c"])
    def test_garbage_fails_without_raising(self, raw):
        assert verify_macaroon(raw, SECRET).valid is False

    def test_missing_payment_hash_caveat(self):
        mac = Macaroon(location=DEFAULT_LOCATION, identifier="id", key=SECRET.hex())
        mac.add_first_party_caveat("expiration = 99999999999999")
        result = verify_macaroon(mac.serialize(), SECRET)
        assert result.valid is False
        assert result.reason == RejectReason.MISSING_CAVEAT

    def test_missing_expiration_caveat(self):
        mac = Macaroon(location=DEFAULT_LOCATION, identifier="id", key=SECRET.hex())
        mac.add_first_party_caveat("payment_hash = " + base64.b64encode(PAYMENT_HASH).decode())
        result = verify_macaroon(mac.serialize(), SECRET)
        assert result.valid is False
        assert result.reason == RejectReason.MISSING_CAVEAT

    def test_duplicate_payment_hash_caveat(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms())
        other = hashlib.sha256(b"other").digest()
        issued.macaroon.add_first_party_caveat("payment_hash = " + base64.b64encode(other).decode())
        result = verify_macaroon(issued.macaroon.serialize(), SECRET)
        assert result.valid is False
        assert result.reason == RejectReason.MISSING_CAVEAT

    def test_malformed_caveat_text(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms())
        issued.macaroon.add_first_party_caveat("no separator")
        result = verify_macaroon(issued.macaroon.serialize(), SECRET)
        assert result.valid is False
        assert result.reason == RejectReason.MALFORMED_TOKEN

    def test_appended_caveat_keeps_signature_valid(self):
        """Holders may attenuate a macaroon without the root key."""
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms())
        issued.macaroon.add_first_party_caveat("method = GET")
        result = verify_macaroon(issued.macaroon.serialize(), SECRET)
        assert result.valid is True
        assert result.caveats[-1].kind == CaveatKind.METHOD

    def test_decode_macaroon(self):
        issued = create_macaroon(SECRET, PAYMENT_HASH, future_ms())
        decoded = decode_macaroon(issued.raw)
        assert decoded is not None
        assert decoded.signature == issued.macaroon.signature
        assert decode_macaroon("not a macaroon") is None
        assert decode_macaroon(None) is None


class TestTokenEngine:
    def test_issue_uses_injected_clock(self):
        engine = TokenEngine(SECRET, clock=lambda: 1_700_000_000.0)
        issued = engine.issue(PAYMENT_HASH, 86400)
        assert issued.expires_at == (1_700_000_000 + 86400) * 1000

    def test_issue_then_verify(self):
        engine = TokenEngine(SECRET, location="https://api.example")
        issued = engine.issue(PAYMENT_HASH.hex(), 60)
        assert engine.verify(issued.raw).valid is True
        assert TokenEngine(b"x" * 32, location="https://api.example").verify(issued.raw).valid is False

    def test_str_secret(self):
        engine = TokenEngine("test-secret-key-for-hmac-signing")
        issued = engine.issue(PAYMENT_HASH, 60)
        assert verify_macaroon(issued.raw, SECRET).valid is True

    def test_requires_secret(self):
        with pytest.raises(ValueError):
            TokenEngine(b"")


class TestVerifyPreimage:
    def test_hex_preimage(self):
        assert verify_preimage(PREIMAGE, PAYMENT_HASH) is True
        assert verify_preimage(PREIMAGE, PAYMENT_HASH.hex()) is True

    def test_uppercase_hex_preimage(self):
        assert verify_preimage(PREIMAGE.upper(), PAYMENT_HASH) is True

    def test_text_preimage(self):
        preimage = "mock-preimage-exactly-32-bytes!!"
        payment_hash = hashlib.sha256(preimage.encode()).digest()
        assert verify_preimage(preimage, payment_hash) is True

    def test_odd_length_hex_is_hashed_as_text(self):
        preimage = "abc"
        assert hash_preimage(preimage) == hashlib.sha256(b"abc").digest()
        assert hash_preimage("abcd") == hashlib.sha256(bytes.fromhex("abcd")).digest()

    def test_trailing_newline_is_not_hex(self):
        assert hash_preimage("abc\n") == hashlib.sha256(b"abc\n").digest()
        assert verify_preimage(PREIMAGE[:-1] + "\n", PAYMENT_HASH) is False

    def test_invalid_preimage(self):
        assert verify_preimage("0000" * 16, PAYMENT_HASH) is False

    def test_empty_inputs(self):
        assert verify_preimage("", PAYMENT_HASH) is False
        assert verify_preimage(PREIMAGE, "") is False
        assert verify_preimage(None, None) is False

    def test_bad_hash_input(self):
        assert verify_preimage(PREIMAGE, "also-not-hex") is False
