"""
⚡ l402-gate — L402 Lightning paywalls for Starlette and FastAPI.

Issue caveat-restricted macaroons bound to Lightning invoices, and admit
requests that present a valid macaroon plus the invoice's preimage.

Usage:
    from l402_gate import create_gate, L402Middleware, path_caveat

    gate = create_gate(
        backend=my_lightning_backend,
        secret_key=os.urandom(32),
        protected_routes=["/api/protected/*"],
        caveats=[path_caveat("/api/protected/*")],
    )
    app.add_middleware(L402Middleware, gate=gate)
"""

from .caveats import (
    Caveat,
    CaveatKind,
    CaveatRegistry,
    CustomValue,
    custom_caveat,
    expiration_caveat,
    ip_caveat,
    method_caveat,
    origin_caveat,
    parse_caveat,
    path_caveat,
    payment_hash_caveat,
    serialize_caveat,
    validate_all,
    validate_caveat,
)
from .config import L402Config
from .context import RequestContext
from .errors import (
    CaveatFormatError,
    InvalidConfiguration,
    L402Error,
    PaymentBackendError,
    PaymentBackendUnavailable,
    RejectReason,
)
from .gate import Challenge, GateDecision, GateState, L402Gate, TokenCheck, create_gate
from .identifier import Identifier, decode_identifier, encode_identifier
from .l402 import (
    L402Credentials,
    format_authorization,
    format_challenge,
    format_challenge_body,
    parse_authorization,
)
from .lightning import Invoice, LndRestBackend, MockPaymentBackend, NwcBackend, PaymentBackend
from .macaroon import (
    IssuedMacaroon,
    TokenEngine,
    VerifyResult,
    create_macaroon,
    decode_macaroon,
    hash_preimage,
    verify_macaroon,
    verify_preimage,
)
from .middleware import L402Middleware
from .stats import GateStats
from .store import CachedChallenge, Session, SessionStore
from .toll import Toll, create_toll

__version__ = "0.1.0"

__all__ = [
    # Main API
    "create_gate",
    "L402Gate",
    "L402Config",
    "GateState",
    "GateDecision",
    "Challenge",
    "TokenCheck",
    "RequestContext",
    # Adapters
    "L402Middleware",
    "create_toll",
    "Toll",
    # Macaroon
    "create_macaroon",
    "decode_macaroon",
    "verify_macaroon",
    "verify_preimage",
    "hash_preimage",
    "TokenEngine",
    "IssuedMacaroon",
    "VerifyResult",
    # Identifier
    "encode_identifier",
    "decode_identifier",
    "Identifier",
    # Caveats
    "Caveat",
    "CaveatKind",
    "CaveatRegistry",
    "CustomValue",
    "expiration_caveat",
    "path_caveat",
    "method_caveat",
    "ip_caveat",
    "origin_caveat",
    "payment_hash_caveat",
    "custom_caveat",
    "serialize_caveat",
    "parse_caveat",
    "validate_caveat",
    "validate_all",
    # L402
    "format_challenge",
    "format_challenge_body",
    "format_authorization",
    "parse_authorization",
    "L402Credentials",
    # Sessions
    "SessionStore",
    "Session",
    "CachedChallenge",
    # Lightning
    "PaymentBackend",
    "Invoice",
    "MockPaymentBackend",
    "LndRestBackend",
    "NwcBackend",
    # Errors
    "L402Error",
    "InvalidConfiguration",
    "PaymentBackendError",
    "PaymentBackendUnavailable",
    "CaveatFormatError",
    "RejectReason",
    # Stats
    "GateStats",
]
