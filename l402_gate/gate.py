"""
L402 protocol orchestrator.

For each request the gate ends in one of four states:

    UNMATCHED      route is not covered by the policy; pass through
    NO_TOKEN       no (parseable) L402 credential; issue a challenge
    TOKEN_INVALID  credential failed a check; issue a challenge
    TOKEN_VALID    signature, preimage, caveats and settlement all hold

A challenge is a Lightning invoice plus a macaroon bound to its payment hash.
The client pays, then retries with `Authorization: L402 <macaroon>:<preimage>`.

The gate is framework-neutral: adapters build a RequestContext and turn the
GateDecision into their own response type.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence

from .caveats import Caveat, CaveatRegistry, first_unsatisfied, glob_match
from .config import DEFAULT_CHALLENGE_ROUTE, L402Config
from .context import RequestContext
from .errors import PaymentBackendUnavailable, RejectReason
from .l402 import L402Credentials, format_challenge, format_challenge_body, parse_authorization
from .lightning.base import Invoice, PaymentBackend
from .lightning.mock import MockPaymentBackend
from .lightning.nwc import NwcBackend
from .macaroon import TokenEngine, verify_preimage
from .stats import GateStats
from .store import CachedChallenge, Session, SessionStore

logger = logging.getLogger(__name__)


class GateState(str, Enum):
    UNMATCHED = "unmatched"
    NO_TOKEN = "no_token"
    TOKEN_INVALID = "token_invalid"
    TOKEN_VALID = "token_valid"


@dataclass
class Challenge:
    """An invoice/macaroon pair offered in a 402 response."""
    invoice: Invoice
    macaroon: str
    www_authenticate: str
    reused: bool = False

    def body(self, description: Optional[str] = None) -> Dict[str, Any]:
        return format_challenge_body(
            invoice=self.invoice.payment_request,
            macaroon=self.macaroon,
            payment_hash=self.invoice.payment_hash,
            amount_sats=self.invoice.amount_sats,
            description=description,
        )


@dataclass
class TokenCheck:
    """Outcome of checking a presented credential."""
    valid: bool
    reason: Optional[RejectReason] = None
    payment_hash: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class GateDecision:
    """What the adapter should do with the request."""
    state: GateState
    challenge: Optional[Challenge] = None
    payment_hash: Optional[str] = None
    reason: Optional[RejectReason] = None

    @property
    def admitted(self) -> bool:
        return self.state in (GateState.UNMATCHED, GateState.TOKEN_VALID)


class L402Gate:
    """Decides pass-through, challenge, or admission for each request."""

    def __init__(
        self,
        config: L402Config,
        backend: PaymentBackend,
        store: Optional[SessionStore] = None,
        stats: Optional[GateStats] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config.validate()
        self.backend = backend
        self.clock = clock
        self.store = store if store is not None else SessionStore(ttl=config.session_ttl, clock=clock)
        self.stats = stats if stats is not None else GateStats()
        self.tokens = TokenEngine(config.secret_bytes, location=config.location, clock=clock)

        self.registry = CaveatRegistry(strict=config.strict_caveats)
        for caveat in config.caveats:
            self.registry.register_caveat(caveat)

    # --- Routing ---

    def matches(self, path: str) -> bool:
        """True if the path is covered by the policy (no patterns = all paths)."""
        if not self.config.protected_routes:
            return True
        return any(glob_match(pattern, path) for pattern in self.config.protected_routes)

    # --- State machine ---

    async def handle(
        self,
        ctx: RequestContext,
        price_sats: Optional[int] = None,
        caveats: Sequence[Caveat] = (),
    ) -> GateDecision:
        """
        Run one request through the gate.

        Args:
            ctx: The request.
            price_sats: Price override for this route.
            caveats: Extra caveats for a challenge issued here (on top of the
                configured ones), e.g. binding the token to this route.

        Returns:
            GateDecision; `admitted` tells the adapter whether to call the handler.

        Raises:
            PaymentBackendUnavailable: a challenge or settlement check could not
                reach the payment backend.
        """
        if not self.matches(ctx.path):
            self.stats.record_pass_through(ctx.path)
            return GateDecision(state=GateState.UNMATCHED)

        credentials = parse_authorization(ctx.header("authorization"))
        reason: Optional[RejectReason] = None

        if credentials is None:
            if ctx.header("authorization"):
                logger.info("Unparseable L402 credential on %s; treating as absent", ctx.path)
                reason = RejectReason.MALFORMED_CREDENTIAL
            state = GateState.NO_TOKEN
        else:
            check = await self.check_credentials(ctx, credentials)
            if check.valid:
                amount = 0
                session = self.store.get_session(check.payment_hash or "")
                if session is not None:
                    amount = session.invoice.amount_sats
                self.stats.record_admission(ctx.path, check.payment_hash or "", amount)
                # A settled invoice must not be offered to the next client
                self.store.discard_challenges(check.payment_hash or "")
                return GateDecision(state=GateState.TOKEN_VALID, payment_hash=check.payment_hash)

            logger.info(
                "Rejected L402 credential on %s %s: %s (%s)",
                ctx.method,
                ctx.path,
                check.reason.value if check.reason else "unknown",
                check.detail,
            )
            state = GateState.TOKEN_INVALID
            reason = check.reason

        challenge = await self.issue_challenge(ctx.path, price_sats=price_sats, caveats=caveats)
        self.stats.record_challenge(ctx.path, reason)
        return GateDecision(state=state, challenge=challenge, reason=reason)

    async def check_credentials(self, ctx: RequestContext, credentials: L402Credentials) -> TokenCheck:
        """
        Check a presented credential: signature, preimage, caveats, settlement.

        Returns a TokenCheck; only a backend failure raises.
        """
        result = self.tokens.verify(credentials.macaroon)
        if not result.valid:
            return TokenCheck(valid=False, reason=result.reason, detail=result.error)

        payment_hash = result.payment_hash_hex
        if not verify_preimage(credentials.preimage, result.payment_hash):
            return TokenCheck(
                valid=False,
                reason=RejectReason.PREIMAGE_MISMATCH,
                payment_hash=payment_hash,
                detail=f"preimage does not hash to {payment_hash[:12]}…",
            )

        if ctx.now_ms is None:
            ctx = dataclasses.replace(ctx, now_ms=int(self.clock() * 1000))
        failed = first_unsatisfied(ctx, result.caveats, self.registry)
        if failed is not None:
            return TokenCheck(
                valid=False,
                reason=RejectReason.CAVEAT_UNSATISFIED,
                payment_hash=payment_hash,
                detail=f"{failed.kind_name} caveat not satisfied",
            )

        try:
            settled = await self.backend.verify_payment(payment_hash)
        except Exception as exc:
            logger.warning("Settlement check failed for %s…: %s", payment_hash[:12], exc)
            raise PaymentBackendUnavailable(f"Payment backend unavailable: {exc}") from exc

        if not settled:
            return TokenCheck(
                valid=False,
                reason=RejectReason.SETTLEMENT_NOT_CONFIRMED,
                payment_hash=payment_hash,
                detail="invoice not settled",
            )

        return TokenCheck(valid=True, payment_hash=payment_hash)

    # --- Challenges ---

    async def issue_challenge(
        self,
        route: str,
        price_sats: Optional[int] = None,
        reuse: Optional[bool] = None,
        caveats: Sequence[Caveat] = (),
    ) -> Challenge:
        """
        Build a challenge for a route, reusing the cached one while it is live.

        Challenges carrying extra caveats are bound to one request shape, so
        they are never served from or written to the route cache.

        Raises:
            PaymentBackendUnavailable: invoice creation failed.
        """
        price = price_sats if price_sats is not None else self.config.price_sats
        if reuse is None:
            reuse = self.config.reuse_challenges
        reuse = reuse and not caveats

        if reuse:
            cached = self.store.get_challenge(route)
            if cached is not None and self._still_redeemable(cached, price):
                return Challenge(
                    invoice=cached.invoice,
                    macaroon=cached.macaroon,
                    www_authenticate=cached.www_authenticate,
                    reused=True,
                )

        try:
            invoice = await self.backend.create_invoice(price, self.config.memo)
        except Exception as exc:
            logger.warning("Invoice creation failed for %s: %s", route, exc)
            raise PaymentBackendUnavailable(f"Payment backend unavailable: {exc}") from exc

        try:
            issued = self.tokens.issue(
                invoice.payment_hash,
                self.config.token_validity,
                caveats=tuple(self.config.caveats) + tuple(caveats),
            )
        except ValueError as exc:
            raise PaymentBackendUnavailable(f"Payment backend returned a bad invoice: {exc}") from exc

        www_authenticate = format_challenge(issued.raw, invoice.payment_request)
        now = self.clock()

        self.store.set_session(
            invoice.payment_hash,
            Session(
                macaroon=issued.raw,
                invoice=invoice,
                secret_key=self.tokens.secret_key,
                created_at=now,
            ),
        )
        if not caveats:
            self.store.set_challenge(
                route,
                CachedChallenge(
                    www_authenticate=www_authenticate,
                    payment_hash=invoice.payment_hash,
                    macaroon=issued.raw,
                    invoice=invoice,
                    created_at=now,
                    expires_at=issued.expires_at,
                ),
            )
        logger.debug("Issued L402 challenge for %s (payment %s…)", route, invoice.payment_hash[:12])

        return Challenge(invoice=invoice, macaroon=issued.raw, www_authenticate=www_authenticate)

    def _still_redeemable(self, cached: CachedChallenge, price: int) -> bool:
        # The cached macaroon must outlive this moment and match the asked price
        if cached.invoice.amount_sats != price:
            return False
        return not cached.expires_at or int(self.clock() * 1000) < cached.expires_at

    async def challenge_for_route(self, route: Optional[str] = None) -> Challenge:
        """Challenge-polling endpoint: latest live challenge for the route, else a new one."""
        return await self.issue_challenge(route or DEFAULT_CHALLENGE_ROUTE, reuse=True)


def create_gate(
    backend: Optional[PaymentBackend] = None,
    wallet_url: Optional[str] = None,
    store: Optional[SessionStore] = None,
    caveats: Sequence[Any] = (),
    protected_routes: Sequence[str] = (),
    **settings: Any,
) -> L402Gate:
    """
    Create a gate for putting routes behind Lightning payments.

    Args:
        backend: Payment backend (must have create_invoice and verify_payment).
        wallet_url: NWC connection string, used when no backend is given.
        store: Session store to share; a private one is created otherwise.
        caveats: Caveats attached to every issued macaroon.
        protected_routes: Glob patterns the gate covers (default: all).
        **settings: Remaining L402Config fields (secret_key is required).

    Returns:
        L402Gate.

    Raises:
        InvalidConfiguration: missing secret or bad settings.
    """
    if backend is not None:
        if not hasattr(backend, "create_invoice") or not hasattr(backend, "verify_payment"):
            raise ValueError(
                "l402-gate: backend must have create_invoice() and verify_payment() methods"
            )
    elif wallet_url:
        backend = NwcBackend(wallet_url)
    else:
        logger.warning("No payment backend configured; using the mock backend")
        backend = MockPaymentBackend()

    config = L402Config(
        caveats=tuple(caveats),
        protected_routes=tuple(protected_routes),
        **settings,
    )
    return L402Gate(config, backend, store=store)
