"""Lightning payment backends."""

from .base import Invoice, PaymentBackend
from .lnd import LndRestBackend
from .mock import MOCK_PAYMENT_HASH, MOCK_PREIMAGE, MockPaymentBackend
from .nwc import NwcBackend, parse_nwc_url

__all__ = [
    "Invoice",
    "PaymentBackend",
    "LndRestBackend",
    "MockPaymentBackend",
    "MOCK_PREIMAGE",
    "MOCK_PAYMENT_HASH",
    "NwcBackend",
    "parse_nwc_url",
]
