"""
FastAPI integration: per-route dependencies and decorators.

create_toll() wraps an L402Gate so individual endpoints can be put behind
Lightning paywalls, either with Depends() or a decorator.
"""

import functools
import inspect
from typing import Any, Callable, Dict, List, Optional

from fastapi import HTTPException, Request
from fastapi.responses import Response

from .caveats import Caveat, method_caveat, path_caveat
from .context import RequestContext
from .errors import PaymentBackendError
from .gate import GateState, L402Gate, create_gate
from .middleware import challenge_endpoint_response
from .stats import GateStats


class TollDependency:
    """FastAPI dependency guarding one route."""

    def __init__(
        self,
        gate: L402Gate,
        sats: Optional[int] = None,
        description: Optional[str] = None,
        bind_endpoint: bool = True,
        bind_method: bool = True,
    ):
        self.gate = gate
        self.sats = sats
        self.description = description
        self.bind_endpoint = bind_endpoint
        self.bind_method = bind_method

    def binding_caveats(self, ctx: RequestContext) -> List[Caveat]:
        """Caveats tying a token issued here to this route (and method)."""
        caveats = []
        if self.bind_endpoint:
            caveats.append(path_caveat(ctx.path))
        if self.bind_method:
            caveats.append(method_caveat(ctx.method))
        return caveats

    async def __call__(self, request: Request) -> Dict[str, Any]:
        """
        Process a request through the gate.

        Returns:
            Payment info dict (the dependency result).

        Raises:
            HTTPException: 402 with a fresh challenge if payment is required,
                503 if the payment backend cannot be reached.
        """
        ctx = RequestContext.from_request(request)
        if self.bind_endpoint and ("\n" in ctx.path or "\r" in ctx.path):
            raise HTTPException(status_code=400, detail={"error": "Invalid request path"})

        try:
            decision = await self.gate.handle(
                ctx,
                price_sats=self.sats,
                caveats=self.binding_caveats(ctx),
            )
        except PaymentBackendError as e:
            raise HTTPException(
                status_code=e.status_code,
                detail={"error": "Payment backend unavailable"},
            ) from e

        if decision.state == GateState.TOKEN_VALID:
            return {"paid": True, "payment_hash": decision.payment_hash}
        if decision.state == GateState.UNMATCHED:
            return {"paid": False, "payment_hash": None}

        challenge = decision.challenge
        raise HTTPException(
            status_code=402,
            detail=challenge.body(self.description),
            headers={"WWW-Authenticate": challenge.www_authenticate},
        )


class Toll:
    """
    Toll gate for FastAPI routes.

    Usage as dependency:
        toll = create_toll(backend=..., secret="...")
        @app.get("/api/data")
        async def data(payment=Depends(toll(sats=5))):
            return {"data": "..."}

    Usage as decorator:
        @app.get("/api/data")
        @toll.require(sats=5)
        async def data(request: Request):
            return {"data": "..."}
    """

    def __init__(self, gate: L402Gate, bind_endpoint: bool = True, bind_method: bool = True):
        self.gate = gate
        self.bind_endpoint = bind_endpoint
        self.bind_method = bind_method

    @property
    def stats(self) -> GateStats:
        return self.gate.stats

    def __call__(self, sats: Optional[int] = None, description: Optional[str] = None) -> TollDependency:
        """
        Create a FastAPI dependency for a route.

        Args:
            sats: Price for this route (defaults to the gate's price).
            description: Shown in the 402 body.
        """
        return TollDependency(
            self.gate,
            sats=sats,
            description=description,
            bind_endpoint=self.bind_endpoint,
            bind_method=self.bind_method,
        )

    def require(self, sats: Optional[int] = None, description: Optional[str] = None) -> Callable:
        """
        Decorator that requires payment before executing the handler.

        The handler must take a `request: Request` parameter. Payment info is
        passed as a `payment` keyword argument if the handler accepts it.
        """
        dependency = self(sats=sats, description=description)

        def decorator(func: Callable) -> Callable:
            accepts_payment = "payment" in inspect.signature(func).parameters

            @functools.wraps(func)
            async def wrapper(*args: Any, **kwargs: Any) -> Any:
                request = kwargs.get("request")
                if request is None:
                    request = next((a for a in args if isinstance(a, Request)), None)
                if request is None:
                    raise RuntimeError(
                        "toll.require() decorator needs a 'request: Request' parameter "
                        "in the route handler"
                    )

                payment = await dependency(request)
                if accepts_payment:
                    kwargs["payment"] = payment
                return await func(*args, **kwargs)

            return wrapper

        return decorator

    def challenge_endpoint(self) -> Callable:
        """
        Route handler for challenge polling.

        Usage:
            app.add_api_route("/api/l402/challenge", toll.challenge_endpoint())
        """

        async def challenge_handler(route: Optional[str] = None) -> Response:
            return await challenge_endpoint_response(self.gate, route)

        return challenge_handler

    def dashboard_data(self) -> Dict[str, Any]:
        """Current gate and session-store stats as a dict."""
        data = self.gate.stats.to_dict()
        data["store"] = self.gate.store.stats()
        return data


def create_toll(
    backend: Optional[Any] = None,
    wallet_url: Optional[str] = None,
    secret: Any = "",
    bind_endpoint: bool = True,
    bind_method: bool = True,
    **settings: Any,
) -> Toll:
    """
    Create a toll booth for gating FastAPI endpoints behind Lightning payments.

    Args:
        backend: Payment backend instance.
        wallet_url: NWC connection string (nostr+walletconnect://...).
        secret: Root key for signing macaroons (required).
        bind_endpoint: Bind macaroons to the path they were bought on (default True).
        bind_method: Bind macaroons to the HTTP method they were bought with (default True).
        **settings: Further L402Config fields (price_sats, token_validity,
            location, caveats, ...).

    Returns:
        Toll instance.
    """
    gate = create_gate(backend=backend, wallet_url=wallet_url, secret_key=secret, **settings)
    return Toll(gate, bind_endpoint=bind_endpoint, bind_method=bind_method)
