"""
Starlette/FastAPI middleware for L402 gates.

Guards every route the gate's policy matches and serves the
challenge-polling endpoint:

    app.add_middleware(L402Middleware, gate=gate)

    GET /api/l402/challenge?route=/api/protected/data
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from .context import RequestContext
from .errors import PaymentBackendError
from .gate import Challenge, L402Gate

logger = logging.getLogger(__name__)


def challenge_response(challenge: Challenge, description: Optional[str] = None) -> JSONResponse:
    """402 response carrying the challenge header and JSON body."""
    return JSONResponse(
        status_code=402,
        content=challenge.body(description),
        headers={"WWW-Authenticate": challenge.www_authenticate},
    )


def backend_error_response(error: PaymentBackendError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"error": "Payment backend unavailable"},
    )


async def challenge_endpoint_response(gate: L402Gate, route: Optional[str]) -> Response:
    """Serve the latest live challenge for `route`, issuing one if needed."""
    try:
        challenge = await gate.challenge_for_route(route)
    except PaymentBackendError as e:
        return backend_error_response(e)
    return challenge_response(challenge)


class L402Middleware(BaseHTTPMiddleware):
    """Runs each request through an L402Gate before the app sees it."""

    def __init__(self, app: Any, gate: L402Gate, serve_challenge_endpoint: bool = True):
        super().__init__(app)
        self.gate = gate
        self.serve_challenge_endpoint = serve_challenge_endpoint

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if (
            self.serve_challenge_endpoint
            and request.method == "GET"
            and path == self.gate.config.challenge_endpoint
        ):
            return await challenge_endpoint_response(self.gate, request.query_params.get("route"))

        try:
            decision = await self.gate.handle(RequestContext.from_request(request))
        except PaymentBackendError as e:
            logger.error("L402 gate failed on %s: %s", path, e)
            return backend_error_response(e)

        if decision.admitted:
            return await call_next(request)

        return challenge_response(decision.challenge)
