"""
Mock Lightning backend for tests and local development.

Every invoice shares one payment hash: SHA256(MOCK_PREIMAGE). Present
MOCK_PREIMAGE as the preimage to pass the proof check.
"""

from __future__ import annotations

import hashlib
from typing import Optional

from .base import Invoice

MOCK_PREIMAGE = "mock-preimage-exactly-32-bytes!!"
MOCK_PAYMENT_HASH = hashlib.sha256(MOCK_PREIMAGE.encode("utf-8")).hexdigest()


class MockPaymentBackend:
    """Backend that never talks to a node."""

    def __init__(self, settled: bool = True):
        self.settled = settled
        self.invoices_created = 0

    async def create_invoice(self, amount_sats: int, memo: Optional[str] = None) -> Invoice:
        self.invoices_created += 1
        return Invoice(
            payment_hash=MOCK_PAYMENT_HASH,
            payment_request=f"lnbc{amount_sats}u1p{MOCK_PAYMENT_HASH[:10]}",
            amount_sats=amount_sats,
        )

    async def verify_payment(self, payment_hash: str) -> bool:
        return self.settled
