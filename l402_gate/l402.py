"""
L402 protocol header parsing and formatting.

Implements the L402 (formerly LSAT) protocol for HTTP 402 Payment Required.

WWW-Authenticate: L402 macaroon="...", invoice="lnbc..."
Authorization: L402 <macaroon>:<preimage>

Field order and quoting of the challenge header are fixed; clients match on
them literally.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional

SCHEME_PREFIX = "L402 "


@dataclass
class L402Credentials:
    """Parsed L402 authorization credentials."""
    macaroon: str
    preimage: str


def format_challenge(macaroon: str, invoice: str) -> str:
    """
    Format a WWW-Authenticate header value for a 402 response.

    Args:
        macaroon: Serialized macaroon.
        invoice: Bolt11 payment request.

    Returns:
        WWW-Authenticate header value.
    """
    return f'L402 macaroon="{macaroon}", invoice="{invoice}"'


def format_challenge_body(
    invoice: str,
    macaroon: str,
    payment_hash: str,
    amount_sats: int,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Format a full 402 response body.

    Args:
        invoice: Bolt11 invoice string.
        macaroon: Serialized macaroon.
        payment_hash: Payment hash (hex).
        amount_sats: Amount in satoshis.
        description: Invoice description.

    Returns:
        Dict suitable for JSON response.
    """
    return {
        "status": 402,
        "message": "Payment Required",
        "paymentHash": payment_hash,
        "invoice": invoice,
        "macaroon": macaroon,
        "amountSats": amount_sats,
        "description": description,
        "protocol": "L402",
        "instructions": {
            "step1": "Pay the Lightning invoice above",
            "step2": "Get the preimage from the payment receipt",
            "step3": "Retry the request with header: Authorization: L402 <macaroon>:<preimage>",
        },
    }


def parse_authorization(auth_header: Optional[str]) -> Optional[L402Credentials]:
    """
    Parse an Authorization: L402 header.

    Format: L402 <macaroon>:<preimage>

    The scheme prefix is matched exactly. The macaroon ends at the first
    colon; both parts must be non-empty.

    Args:
        auth_header: Full Authorization header value.

    Returns:
        L402Credentials or None if the header is absent or malformed.
    """
    if not auth_header or not isinstance(auth_header, str):
        return None

    if not auth_header.startswith(SCHEME_PREFIX):
        return None

    credentials = auth_header[len(SCHEME_PREFIX):]
    macaroon, sep, preimage = credentials.partition(":")
    if not sep:
        return None

    if not macaroon or not preimage:
        return None

    return L402Credentials(macaroon=macaroon, preimage=preimage)


def format_authorization(macaroon: str, preimage: str) -> str:
    """Build the Authorization header value a paying client sends back."""
    return f"{SCHEME_PREFIX}{macaroon}:{preimage}"
