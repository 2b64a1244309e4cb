"""Async LND REST client implementing the payment backend capability."""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, Dict, Optional, Union

import httpx

from ..errors import PaymentBackendError
from .base import Invoice

logger = logging.getLogger(__name__)

DEFAULT_LND_HOST = "https://localhost:8097"


class LndRestBackend:
    """Creates and looks up invoices on an LND node over its REST API.

    The macaroon is the node's invoice macaroon, base64-encoded; LND expects
    it hex-encoded in the ``Grpc-Metadata-macaroon`` header.
    """

    def __init__(
        self,
        macaroon: str,
        host: str = DEFAULT_LND_HOST,
        verify: Union[bool, str] = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not macaroon:
            raise ValueError("LND macaroon is required")
        try:
            macaroon_hex = base64.b64decode(macaroon).hex()
        except (binascii.Error, ValueError) as exc:
            raise ValueError("LND macaroon must be base64") from exc

        self._client = httpx.AsyncClient(
            base_url=host.rstrip("/"),
            headers={"Grpc-Metadata-macaroon": macaroon_hex},
            timeout=httpx.Timeout(connect=5.0, read=15.0, write=10.0, pool=5.0),
            verify=verify,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        json_data: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            return await self._client.request(method, endpoint, json=json_data)
        except httpx.HTTPError as exc:
            logger.warning("LND request %s %s failed: %s", method, endpoint, exc)
            raise PaymentBackendError(f"LND unreachable: {exc}") from exc

    async def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        """POST /v1/invoices."""
        response = await self._request(
            "POST",
            "/v1/invoices",
            json_data={"value": str(amount_sats), "memo": memo or "L402 payment"},
        )
        if response.status_code >= 400:
            raise PaymentBackendError(
                f"Failed to create invoice: {response.status_code} {response.text}"
            )

        result = response.json()
        try:
            payment_hash = base64.b64decode(result["r_hash"]).hex()
            payment_request = result["payment_request"]
        except (KeyError, TypeError, binascii.Error) as exc:
            raise PaymentBackendError("LND returned a malformed invoice") from exc

        value = result.get("value")
        return Invoice(
            payment_hash=payment_hash,
            payment_request=payment_request,
            amount_sats=int(value) if value else amount_sats,
        )

    async def verify_payment(self, payment_hash: str) -> bool:
        """GET /v1/invoice/{r_hash_str}. Unknown invoices count as unpaid."""
        response = await self._request("GET", f"/v1/invoice/{payment_hash}")
        if response.status_code == 404:
            return False
        if response.status_code >= 400:
            raise PaymentBackendError(
                f"Invoice lookup failed: {response.status_code} {response.text}"
            )
        result = response.json()
        return result.get("settled") is True or result.get("state") == "SETTLED"

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "LndRestBackend":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()
