"""
Nostr Wallet Connect (NIP-47) payment backend.

Talks to a Lightning wallet through a Nostr relay:
1. Parse the NWC URL for relay URL, wallet pubkey and client secret
2. Send NIP-04 encrypted requests (kind 23194) over a WebSocket
3. Wait for the wallet's encrypted response (kind 23195)

Only the two calls the gate needs are exposed: make_invoice and
lookup_invoice.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

import websockets
from websockets.exceptions import WebSocketException
from coincurve import PrivateKey

from ..errors import PaymentBackendError
from .base import Invoice
from .nip04 import Nip04Cipher, xonly_public_key

logger = logging.getLogger(__name__)

NWC_SCHEME = "nostr+walletconnect"
KIND_REQUEST = 23194
KIND_RESPONSE = 23195


@dataclass
class NwcConfig:
    """Parsed NWC URL configuration."""
    relay_url: str
    wallet_pubkey: str
    secret_key: str
    client_pubkey: str  # derived from secret_key


def parse_nwc_url(nwc_url: str) -> NwcConfig:
    """
    Parse an NWC (Nostr Wallet Connect) URL.

    Format: nostr+walletconnect://<wallet_pubkey>?relay=<relay_url>&secret=<secret_key>

    Raises:
        ValueError: wrong scheme or a missing component.
    """
    parsed = urlparse(nwc_url)

    if parsed.scheme != NWC_SCHEME:
        raise ValueError(f"Invalid NWC URL scheme: {parsed.scheme} (expected {NWC_SCHEME})")

    wallet_pubkey = parsed.netloc or parsed.hostname or ""
    if not wallet_pubkey:
        raise ValueError("NWC URL missing wallet pubkey")

    params = parse_qs(parsed.query)
    relay_url = params.get("relay", [None])[0]
    secret_key = params.get("secret", [None])[0]

    if not relay_url:
        raise ValueError("NWC URL missing relay parameter")
    if not secret_key:
        raise ValueError("NWC URL missing secret parameter")

    return NwcConfig(
        relay_url=relay_url,
        wallet_pubkey=wallet_pubkey,
        secret_key=secret_key,
        client_pubkey=xonly_public_key(secret_key),
    )


def sign_event(event: Dict[str, Any], secret_key: str) -> Dict[str, Any]:
    """Fill in a Nostr event's id (NIP-01) and Schnorr signature."""
    serialized = json.dumps(
        [0, event["pubkey"], event["created_at"], event["kind"], event["tags"], event["content"]],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    event_hash = hashlib.sha256(serialized.encode("utf-8")).digest()
    event["id"] = event_hash.hex()
    event["sig"] = PrivateKey(bytes.fromhex(secret_key)).sign_schnorr(event_hash).hex()
    return event


class NwcBackend:
    """Payment backend backed by an NWC wallet connection."""

    def __init__(self, nwc_url: str, timeout: float = 30.0, invoice_expiry: int = 300):
        self.config = parse_nwc_url(nwc_url)
        self.timeout = timeout
        self.invoice_expiry = invoice_expiry
        self._cipher = Nip04Cipher(self.config.secret_key, self.config.wallet_pubkey)
        self._ws: Optional[Any] = None
        self._lock = asyncio.Lock()

    async def _connection(self) -> Any:
        if self._ws is None:
            self._ws = await websockets.connect(self.config.relay_url)
        return self._ws

    async def _call(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Send one NIP-47 request and return its result dict."""
        async with self._lock:
            try:
                return await asyncio.wait_for(self._roundtrip(method, params), self.timeout)
            except asyncio.TimeoutError as exc:
                raise PaymentBackendError(f"NWC {method} timed out after {self.timeout}s") from exc
            except (OSError, WebSocketException) as exc:
                self._ws = None
                logger.warning("NWC relay connection failed during %s: %s", method, exc)
                raise PaymentBackendError(f"NWC relay unavailable: {exc}") from exc

    async def _roundtrip(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        ws = await self._connection()

        event = sign_event(
            {
                "kind": KIND_REQUEST,
                "pubkey": self.config.client_pubkey,
                "created_at": int(time.time()),
                "tags": [["p", self.config.wallet_pubkey]],
                "content": self._cipher.encrypt(json.dumps({"method": method, "params": params})),
            },
            self.config.secret_key,
        )

        # Subscribe before publishing so the response cannot be missed
        sub_id = secrets.token_hex(16)
        await ws.send(json.dumps(["REQ", sub_id, {
            "kinds": [KIND_RESPONSE],
            "authors": [self.config.wallet_pubkey],
            "#p": [self.config.client_pubkey],
            "#e": [event["id"]],
        }]))
        await ws.send(json.dumps(["EVENT", event]))

        try:
            while True:
                msg = json.loads(await ws.recv())
                if isinstance(msg, list) and len(msg) >= 3 and msg[0] == "EVENT" and msg[1] == sub_id:
                    reply = json.loads(self._cipher.decrypt(msg[2]["content"]))
                    break
        finally:
            await ws.send(json.dumps(["CLOSE", sub_id]))

        error = reply.get("error")
        if error:
            raise PaymentBackendError(
                f"NWC error: {error.get('message', 'Unknown error')} (code: {error.get('code', 'N/A')})"
            )
        return reply.get("result", {})

    async def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        # NWC amounts are millisats
        result = await self._call("make_invoice", {
            "amount": amount_sats * 1000,
            "description": memo or "",
            "expiry": self.invoice_expiry,
        })

        invoice = result.get("invoice", "")
        payment_hash = result.get("payment_hash", "")
        if not invoice or not payment_hash:
            raise PaymentBackendError("NWC make_invoice returned no invoice")

        return Invoice(payment_hash=payment_hash, payment_request=invoice, amount_sats=amount_sats)

    async def verify_payment(self, payment_hash: str) -> bool:
        result = await self._call("lookup_invoice", {"payment_hash": payment_hash})
        return result.get("settled_at") is not None or bool(result.get("preimage"))

    async def close(self) -> None:
        """Close the WebSocket connection."""
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
