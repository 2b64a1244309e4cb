"""Tests for the L402 protocol header module."""

from l402_gate.l402 import (
    format_authorization,
    format_challenge,
    format_challenge_body,
    parse_authorization,
)


class TestFormatChallenge:
    def test_basic_format(self):
        result = format_challenge("AgELbG9jYWxob3N0...", "lnbc50n1pj...")
        assert result == 'L402 macaroon="AgELbG9jYWxob3N0...", invoice="lnbc50n1pj..."'

    def test_macaroon_comes_before_invoice(self):
        result = format_challenge("MAC", "INV")
        assert result.index('macaroon="MAC"') < result.index('invoice="INV"')


class TestFormatChallengeBody:
    def test_includes_all_fields(self):
        body = format_challenge_body(
            invoice="lnbc50n1...",
            macaroon="AgEL...",
            payment_hash="abc123",
            amount_sats=5,
            description="Test invoice",
        )
        assert body["status"] == 402
        assert body["message"] == "Payment Required"
        assert body["invoice"] == "lnbc50n1..."
        assert body["macaroon"] == "AgEL..."
        assert body["paymentHash"] == "abc123"
        assert body["amountSats"] == 5
        assert body["description"] == "Test invoice"
        assert body["protocol"] == "L402"
        assert set(body["instructions"]) == {"step1", "step2", "step3"}

    def test_null_description(self):
        body = format_challenge_body(
            invoice="lnbc...",
            macaroon="AgE...",
            payment_hash="abc",
            amount_sats=1,
        )
        assert body["description"] is None


class TestParseAuthorization:
    def test_valid_l402_header(self):
        result = parse_authorization("L402 AgELbG9jYWxob3N0:deadbeef0123")
        assert result is not None
        assert result.macaroon == "AgELbG9jYWxob3N0"
        assert result.preimage == "deadbeef0123"

    def test_prefix_is_exact(self):
        assert parse_authorization("l402 mac123:pre456") is None
        assert parse_authorization("L402mac:pre") is None

    def test_missing_colon(self):
        assert parse_authorization("L402 abc") is None

    def test_empty_macaroon(self):
        assert parse_authorization("L402 :preimage") is None

    def test_empty_preimage(self):
        assert parse_authorization("L402 macaroon:") is None

    def test_not_l402(self):
        assert parse_authorization("Bearer token123") is None

    def test_none_and_empty(self):
        assert parse_authorization(None) is None
        assert parse_authorization("") is None

    def test_non_string_input(self):
        assert parse_authorization(12345) is None

    def test_macaroon_ends_at_first_colon(self):
        result = parse_authorization("L402 mac:pre:extra")
        assert result is not None
        assert result.macaroon == "mac"
        assert result.preimage == "pre:extra"

    def test_format_authorization_parses_back(self):
        header = format_authorization("AgEL", "a" * 64)
        assert header == "L402 AgEL:" + "a" * 64
        parsed = parse_authorization(header)
        assert parsed.macaroon == "AgEL"
        assert parsed.preimage == "a" * 64
