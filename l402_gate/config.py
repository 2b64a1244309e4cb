"""
Gate configuration.

Plain frozen dataclass; the host application builds it from its own
settings and hands it to create_gate().
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .caveats import Caveat
from .errors import InvalidConfiguration
from .macaroon import DEFAULT_LOCATION, MIN_SECRET_LENGTH
from .store import DEFAULT_TTL

DEFAULT_PRICE_SATS = 100
DEFAULT_TOKEN_VALIDITY = 24 * 60 * 60
DEFAULT_CHALLENGE_ENDPOINT = "/api/l402/challenge"
DEFAULT_CHALLENGE_ROUTE = "/api/protected/default"


@dataclass(frozen=True)
class L402Config:
    secret_key: Union[bytes, str] = b""
    price_sats: int = DEFAULT_PRICE_SATS
    token_validity: int = DEFAULT_TOKEN_VALIDITY   # seconds
    location: str = DEFAULT_LOCATION
    challenge_endpoint: str = DEFAULT_CHALLENGE_ENDPOINT
    caveats: Tuple[Caveat, ...] = ()
    protected_routes: Tuple[str, ...] = ()         # globs; empty = every route
    session_ttl: int = DEFAULT_TTL                 # seconds
    reuse_challenges: bool = False
    strict_caveats: bool = False
    memo: Optional[str] = None

    @property
    def secret_bytes(self) -> bytes:
        if isinstance(self.secret_key, str):
            return self.secret_key.encode("utf-8")
        return bytes(self.secret_key)

    def validate(self) -> "L402Config":
        """Raise InvalidConfiguration if the gate cannot run with these settings."""
        if not self.secret_key:
            raise InvalidConfiguration("Secret key is required for L402")
        if len(self.secret_bytes) < MIN_SECRET_LENGTH:
            raise InvalidConfiguration(
                f"Secret key must be at least {MIN_SECRET_LENGTH} bytes"
            )
        if self.price_sats <= 0:
            raise InvalidConfiguration("price_sats must be positive")
        if self.token_validity <= 0:
            raise InvalidConfiguration("token_validity must be positive")
        if self.session_ttl <= 0:
            raise InvalidConfiguration("session_ttl must be positive")
        if not self.location:
            raise InvalidConfiguration("location is required")
        if not self.challenge_endpoint.startswith("/"):
            raise InvalidConfiguration("challenge_endpoint must be an absolute path")
        for caveat in self.caveats:
            try:
                caveat.serialize()
            except ValueError as e:
                raise InvalidConfiguration(f"Invalid policy caveat: {e}") from e
        return self
