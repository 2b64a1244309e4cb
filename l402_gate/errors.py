"""
Exception hierarchy and rejection reasons for the L402 gate.

Exceptions are reserved for faults the request cannot recover from
(bad configuration, an unreachable payment backend). An invalid or
unpaid token is an expected outcome and is reported through
RejectReason on a result object instead.
"""

from __future__ import annotations

from enum import Enum


class L402Error(Exception):
    """Base exception for L402 operations."""

    def __init__(self, message: str, status_code: int = 402) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidConfiguration(L402Error):
    """The gate cannot be constructed with the given settings."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=500)


class PaymentBackendError(L402Error):
    """A Lightning backend call failed (network, auth, bad response)."""

    def __init__(self, message: str, status_code: int = 503) -> None:
        super().__init__(message, status_code=status_code)


class PaymentBackendUnavailable(PaymentBackendError):
    """Raised by the gate when the backend fails mid-request."""


class CaveatFormatError(ValueError):
    """Caveat text that does not follow the '<kind> = <value>' form."""


class RejectReason(str, Enum):
    """Why a presented credential was not admitted (server-side only)."""

    MALFORMED_CREDENTIAL = "malformed_credential"
    MALFORMED_TOKEN = "malformed_token"
    SIGNATURE_INVALID = "signature_invalid"
    MISSING_CAVEAT = "missing_caveat"
    PREIMAGE_MISMATCH = "preimage_mismatch"
    CAVEAT_UNSATISFIED = "caveat_unsatisfied"
    SETTLEMENT_NOT_CONFIRMED = "settlement_not_confirmed"
