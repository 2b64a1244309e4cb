"""
Payment backend capability consumed by the gate.

Anything with these two coroutines works: a real node client, a wallet
connection, or a test double.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable


@dataclass
class Invoice:
    """A Lightning invoice as the gate needs it."""
    payment_hash: str      # hex, 32 bytes
    payment_request: str   # bolt11
    amount_sats: int


@runtime_checkable
class PaymentBackend(Protocol):
    async def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        """Create an invoice. Raise PaymentBackendError on failure."""
        ...

    async def verify_payment(self, payment_hash: str) -> bool:
        """True once the invoice for payment_hash is settled."""
        ...
